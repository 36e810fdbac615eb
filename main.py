import asyncio
import argparse
import json
import logging
import os
import sys
from core.analyzer_manager import AnalyzerManager
from core.result_strategies import STRATEGIES
from models.product import ConfigurationError
from rules.rules_loader import PRODUCTS_SUBDIR, load_product_definitions
from salesforce.rest_client import DEFAULT_API_VERSION, SalesforceRestClient


def _serialize_results(results, errors) -> dict:
    return {
        "results": {key: result.to_dict() for key, result in results.items()},
        "errors": dict(errors),
    }


def main():
    parser = argparse.ArgumentParser(description="Salesforce product usage analyzer CLI")
    parser.add_argument("--instance-url", type=str, default=os.environ.get("SF_INSTANCE_URL"), help="Org instance URL (default: $SF_INSTANCE_URL)")
    parser.add_argument("--access-token", type=str, default=os.environ.get("SF_ACCESS_TOKEN"), help="OAuth access token (default: $SF_ACCESS_TOKEN)")
    parser.add_argument("--api-version", type=str, default=DEFAULT_API_VERSION, help=f"Salesforce API version (default: {DEFAULT_API_VERSION})")
    parser.add_argument("--config-dir", type=str, help="Directory with analyzer_config.yaml and products/ (default: bundled rules)")
    parser.add_argument("--products", type=str, nargs="+", help="Analyze only these product keys (e.g., --products sales_cloud service_cloud)")
    parser.add_argument("--list-products", action="store_true", help="List all available products and exit")
    parser.add_argument("--strategy", type=str, choices=sorted(STRATEGIES), help="Result strategy (default: from config, probability)")
    parser.add_argument("--max-concurrency", type=int, help="Maximum concurrent probes within a category (1 = sequential)")
    parser.add_argument("--probe-timeout", type=float, help="Per-probe timeout in seconds")
    parser.add_argument("--concurrent-products", action="store_true", default=None, help="Analyze products concurrently")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging verbosity level (default: INFO)")
    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=getattr(logging, args.log_level),
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logger = logging.getLogger(__name__)

    # List products if requested
    if args.list_products:
        try:
            products_dir = os.path.join(args.config_dir, PRODUCTS_SUBDIR) if args.config_dir else None
            products = load_product_definitions(products_dir)
        except ConfigurationError as e:
            logger.error(str(e))
            sys.exit(1)
        print("Available products:")
        for key, definition in products.items():
            print(f"  - {key}: {definition.get('name', key)}")
        return

    if not args.instance_url or not args.access_token:
        logger.error("Instance URL and access token are required (use --instance-url/--access-token or SF_INSTANCE_URL/SF_ACCESS_TOKEN)")
        sys.exit(1)

    async def run():
        logger = logging.getLogger(__name__)
        async with SalesforceRestClient(args.instance_url, args.access_token, api_version=args.api_version) as client:
            manager = AnalyzerManager.from_config_dir(
                client,
                args.config_dir,
                strategy=args.strategy,
                max_concurrency=args.max_concurrency,
                probe_timeout=args.probe_timeout,
                concurrent_products=args.concurrent_products,
            )
            logger.info(f"Loaded {len(manager.available_products)} products: {', '.join(manager.available_products)}")

            results = await manager.analyze_all(args.products)
            logger.info(f"Analysis complete for {len(results)} products")
            for key, result in results.items():
                logger.info(f"  {key}: {result.description}")

            print(json.dumps(_serialize_results(results, manager.errors), indent=2, default=str))

    try:
        asyncio.run(run())
    except (ConfigurationError, KeyError) as e:
        logger.error(e.args[0] if e.args else str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
