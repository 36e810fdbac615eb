"""
Static checks over product definitions: duplicated indicators, objects shared
between products, editions declared without signals and edition signals that
no feature indicator can satisfy.
"""
import sys
from collections import defaultdict
from typing import Dict, List, Optional

from models.product import ConfigurationError, ProductDefinition
from rules.rules_loader import load_product_definitions


def parse_definitions(products_dir: Optional[str] = None) -> Dict[str, ProductDefinition]:
    """Load and parse every product definition; raises ConfigurationError on the first bad one."""
    raw = load_product_definitions(products_dir)
    parsed = {}
    for key, data in raw.items():
        try:
            parsed[key] = ProductDefinition.from_dict(data)
        except ConfigurationError as e:
            raise ConfigurationError(f"{key}: {e}") from e
    return parsed


def detect_duplicate_items(definition: ProductDefinition) -> Dict[str, List[str]]:
    """
    Detect indicator names declared more than once within one product.

    Returns:
        Dictionary with item names as keys and the categories declaring them as values
    """
    categories_by_name = defaultdict(list)
    for category in definition.indicators:
        for item in category.items:
            categories_by_name[item.name].append(category.category)

    return {name: cats for name, cats in categories_by_name.items() if len(cats) > 1}


def detect_shared_objects(definitions: Dict[str, ProductDefinition]) -> Dict[str, List[str]]:
    """
    Detect object indicators probed by more than one product.

    Shared objects are not errors but they inflate several products' scores
    from the same evidence.
    """
    products_by_object = defaultdict(list)
    for key, definition in definitions.items():
        for item in definition.items():
            if item.type == "object" and key not in products_by_object[item.name]:
                products_by_object[item.name].append(key)

    return {obj: keys for obj, keys in products_by_object.items() if len(keys) > 1}


def detect_unmatched_edition_signals(definition: ProductDefinition) -> Dict[str, List[str]]:
    """
    Detect edition signals that are not a substring of any feature-like indicator name.

    Such signals can never be matched, so their edition needs more of its
    other signals to be selected.
    """
    feature_names = [i.name for i in definition.items() if i.type in ("feature", "integration", "code")]
    unmatched = {}
    for edition, signals in definition.edition_signals:
        missing = [s for s in signals if not any(s in name for name in feature_names)]
        if missing:
            unmatched[edition] = missing
    return unmatched


def detect_empty_edition_signals(definition: ProductDefinition) -> List[str]:
    """Detect editions declared without signals; they are only chosen as the fallback edition."""
    return [edition for edition, signals in definition.edition_signals if not signals]


def print_validation_report(definitions: Dict[str, ProductDefinition], verbose: bool = True) -> int:
    """
    Print a validation report for product definitions.

    Returns:
        Number of warnings found
    """
    warnings_found = 0
    print("\n" + "=" * 70)
    print("PRODUCT DEFINITIONS VALIDATION REPORT")
    print("=" * 70)
    print(f"\nTotal Products: {len(definitions)}")

    for key, definition in definitions.items():
        items = definition.items()
        print(f"\n{definition.name} [{key}]: {len(definition.indicators)} categories, {len(items)} indicators")

        duplicates = detect_duplicate_items(definition)
        if duplicates:
            warnings_found += len(duplicates)
            print(f"  ⚠ DUPLICATE INDICATORS: {len(duplicates)}")
            for name, categories in sorted(duplicates.items()):
                print(f"    '{name}' -> {', '.join(categories)}")
        else:
            print("  ✓ No duplicate indicators")

        unmatched = detect_unmatched_edition_signals(definition)
        if unmatched:
            warnings_found += sum(len(s) for s in unmatched.values())
            print(f"  ⚠ UNMATCHABLE EDITION SIGNALS: {sum(len(s) for s in unmatched.values())}")
            if verbose:
                for edition, signals in unmatched.items():
                    print(f"    {edition}: {', '.join(signals)}")
        else:
            print("  ✓ All edition signals can be matched")

        empty = detect_empty_edition_signals(definition)
        if empty:
            warnings_found += len(empty)
            print(f"  ⚠ EDITIONS WITHOUT SIGNALS: {', '.join(empty)}")

    shared = detect_shared_objects(definitions)
    if shared:
        print(f"\n⚠ OBJECTS SHARED BETWEEN PRODUCTS: {len(shared)}")
        if verbose:
            for obj, keys in sorted(shared.items()):
                print(f"  '{obj}' -> {', '.join(keys)}")
    else:
        print("\n✓ No objects shared between products")

    print("\n" + "=" * 70)
    return warnings_found


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(
        description="Validate product definitions for duplications and inconsistencies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate the bundled product definitions
  python -m core.rules_validator

  # Validate definitions from another directory
  python -m core.rules_validator --products-dir ./my_products --no-verbose
        """
    )
    parser.add_argument('--products-dir', default=None, help='Directory of product definition files')
    parser.add_argument(
        '--no-verbose',
        action='store_false',
        dest='verbose',
        default=True,
        help='Do not show verbose details'
    )
    args = parser.parse_args()

    try:
        print_validation_report(parse_definitions(args.products_dir), verbose=args.verbose)
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)
