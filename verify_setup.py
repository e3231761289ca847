#!/usr/bin/env python3
"""
Setup verification script - Check that ledger_rpc is installed and configured
"""

import sys
import os
import importlib

PLACEHOLDER_MARKERS = ('YOUR_', 'your-')

def check_python_version():
    """Check Python version"""
    print("Checking Python version...")
    version = sys.version_info
    if version.major == 3 and version.minor >= 9:
        print(f"✅ Python {version.major}.{version.minor}.{version.micro} - OK")
        return True
    else:
        print(f"❌ Python {version.major}.{version.minor}.{version.micro} - Requires Python 3.9+")
        return False

def check_dependencies():
    """Check project dependencies"""
    print("\nChecking dependencies...")

    dependencies = [
        ('web3', 'Ledger JSON-RPC client'),
        ('aiohttp', 'Probe transport / biometric device'),
        ('tenacity', 'Retry logic'),
        ('yaml', 'YAML configuration'),
        ('dotenv', 'Environment variables'),
    ]

    all_ok = True
    for dep, desc in dependencies:
        try:
            importlib.import_module(dep)
            print(f"✅ {dep:<15} - {desc}")
        except ImportError:
            print(f"❌ {dep:<15} - MISSING ({desc})")
            all_ok = False

    return all_ok

def check_project_structure():
    """Check project structure"""
    print("\nChecking project structure...")

    required_files = [
        'ledger_rpc/__init__.py',
        'ledger_rpc/cli.py',
        'ledger_rpc/configs/chains.yaml',
        'pyproject.toml',
        '.env.example',
    ]

    required_dirs = [
        'ledger_rpc',
        'ledger_rpc/configs',
        'tests',
    ]

    all_ok = True

    for dirname in required_dirs:
        if os.path.isdir(dirname):
            print(f"✅ {dirname}/ - Directory exists")
        else:
            print(f"❌ {dirname}/ - Directory missing")
            all_ok = False

    for filename in required_files:
        if os.path.isfile(filename):
            print(f"✅ {filename} - File exists")
        else:
            print(f"❌ {filename} - File missing")
            all_ok = False

    return all_ok

def configured(value):
    return bool(value) and not any(m in value for m in PLACEHOLDER_MARKERS)

def check_env_config():
    """Check environment configuration"""
    print("\nChecking environment configuration...")

    if not os.path.isfile('.env'):
        print("⚠️  .env file not found - public fallback endpoints only (copy .env.example to .env)")
        return True

    print("✅ .env file exists")
    from dotenv import load_dotenv
    load_dotenv()

    for var in ['POLYGON_RPC_URL', 'POLYGON_WSS_URL']:
        if configured(os.getenv(var)):
            print(f"✅ {var} - Configured")
        else:
            print(f"⚠️  {var} - Not configured or using placeholder")

    bio = [v for v in ('BIOMETRIC_HTTP_URL', 'BIOMETRIC_WS_URL') if configured(os.getenv(v))]
    if bio:
        print(f"✅ Biometric device - {', '.join(bio)}")
    else:
        print("⚠️  Biometric device - Not configured (gated writes will be refused)")
    return True

def check_imports():
    """Check project module imports"""
    print("\nChecking project imports...")

    modules = [
        'ledger_rpc.config',
        'ledger_rpc.errors',
        'ledger_rpc.pool',
        'ledger_rpc.retry',
        'ledger_rpc.pipeline',
        'ledger_rpc.session',
        'ledger_rpc.cli',
    ]

    all_ok = True
    for module in modules:
        try:
            importlib.import_module(module)
            print(f"✅ {module} - Import OK")
        except ImportError as e:
            print(f"❌ {module} - Import failed: {e}")
            all_ok = False

    return all_ok

def main():
    """Main verification workflow"""
    print("ledger-rpc - Setup Verification")
    print("=" * 50)

    checks = [
        ("Python Version", check_python_version),
        ("Dependencies", check_dependencies),
        ("Project Structure", check_project_structure),
        ("Environment Config", check_env_config),
        ("Module Imports", check_imports),
    ]

    results = []
    for name, check_func in checks:
        result = check_func()
        results.append((name, result))

    print("\n" + "=" * 50)
    print("VERIFICATION SUMMARY")
    print("=" * 50)

    all_passed = True
    for name, passed in results:
        status = "✅ PASS" if passed else "❌ FAIL"
        print(f"{name:<20} {status}")
        if not passed:
            all_passed = False

    print("\n" + "=" * 50)
    if all_passed:
        print("ALL CHECKS PASSED! Project is ready to use.")
        print("\nNext steps:")
        print("1. Configure POLYGON_RPC_URL (and BIOMETRIC_* if writes are gated) in .env")
        print("2. Run: ledger-rpc status")
        print("3. Run: ledger-rpc gas")
    else:
        print("SOME CHECKS FAILED! Please fix the issues above.")

    return 0 if all_passed else 1

if __name__ == "__main__":
    sys.exit(main())
