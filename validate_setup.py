#!/usr/bin/env python3
"""
Product Image Linker - Setup Validation
Checks configuration, dependencies, image storage and the catalog before a first scan
"""

import os
import sys
import importlib.util

REQUIRED_MODULES = [
    "flask",
    "pandas",
    "openpyxl",
    "yaml",
    "dotenv",
    "PIL",
    "requests",
    "sqlite3"
]


def check_file_exists(filepath, description):
    """Check if a file exists"""
    if os.path.exists(filepath):
        print(f"   ✅ {description}: {filepath}")
        return True
    else:
        print(f"   ❌ {description}: {filepath} - MISSING")
        return False


def check_python_module(module_name):
    """Check if a Python module can be imported"""
    try:
        spec = importlib.util.find_spec(module_name)
    except (ImportError, ValueError):
        spec = None
    if spec is not None:
        print(f"   ✅ Python module: {module_name}")
        return True
    print(f"   ❌ Python module: {module_name} - NOT FOUND")
    return False


def check_env_variable(var_name):
    """Check if environment variable is set"""
    value = os.getenv(var_name)
    if value and value != f"your_{var_name.lower()}_here":
        print(f"   ✅ Environment variable: {var_name} = {value[:10]}...")
        return True
    else:
        print(f"   ❌ Environment variable: {var_name} - NOT SET OR DEFAULT")
        return False


def check_storage(config):
    """Check that the configured image store answers a listing call"""
    from sku_linker.errors import StorageAccessFailure
    from sku_linker.storage import create_store

    storage_config = config['storage']
    try:
        store = create_store(storage_config)
        entries = store.list_images(storage_config.get('folder', ''), 1, 0)
    except (StorageAccessFailure, ValueError) as e:
        print(f"   ❌ Image storage ({storage_config.get('backend')}): {e}")
        return False

    print(f"   ✅ Image storage ({storage_config.get('backend')}) reachable, "
          f"{'not empty' if entries else 'empty'}")
    return True


def check_database(config):
    """Check the link database opens and report catalog size"""
    from database import LinkDatabase
    from sku_linker.errors import CatalogAccessFailure

    db_path = config['database']['path']
    try:
        db = LinkDatabase(db_path)
    except Exception as e:
        print(f"   ❌ Database {db_path}: {e}")
        return False

    try:
        products = db.list_active_products_with_code()
        stats = db.get_statistics()
    except CatalogAccessFailure as e:
        print(f"   ❌ Catalog: {e}")
        return False
    finally:
        db.close()

    if not products:
        print(f"   ❌ Database {db_path} has no active products with a code")
        print("   💡 Load the catalog products into the products table first")
        return False

    print(f"   ✅ Catalog with {len(products)} products, "
          f"{stats['products_with_images']} already have an image")
    return True


def main():
    """Main validation function"""
    print("============================================================")
    print("🔍 PRODUCT IMAGE LINKER - SETUP VALIDATION")
    print("============================================================")
    print()

    all_good = True

    # Check Python dependencies first, everything below imports them
    print("🐍 CHECKING PYTHON DEPENDENCIES:")
    for module in REQUIRED_MODULES:
        if not check_python_module(module):
            all_good = False

    if not all_good:
        print()
        print("⚠️  VALIDATION FAILED - install dependencies: pip install -e .")
        return 1

    print()

    print("⚙️  CHECKING CONFIGURATION:")
    from sku_linker.config import load_config

    check_file_exists("config.yaml", "Configuration file")
    try:
        config = load_config("config.yaml")
        print("   ✅ Configuration loaded")
    except Exception as e:
        print(f"   ❌ Configuration invalid: {e}")
        return 1

    if config['storage'].get('backend') == 'supabase':
        for var_name in ("SUPABASE_URL", "SUPABASE_SERVICE_KEY"):
            if not check_env_variable(var_name):
                print("   💡 Copy .env.example to .env and fill in your Supabase project")
                all_good = False

    print()

    print("🖼️  CHECKING IMAGE STORAGE:")
    if not check_storage(config):
        all_good = False

    print()

    print("💾 CHECKING DATABASE:")
    if not check_database(config):
        all_good = False

    print()

    # Final summary
    print("============================================================")
    if all_good:
        print("🎉 VALIDATION PASSED - SYSTEM READY!")
        print()
        print("🚀 NEXT STEPS:")
        print("1. Run a scan: sku-linker scan")
        print("2. Review candidates: python3 app.py")
        print()
    else:
        print("⚠️  VALIDATION FAILED - SETUP REQUIRED")
        print()
    print("============================================================")

    return 0 if all_good else 1


if __name__ == "__main__":
    sys.exit(main())
