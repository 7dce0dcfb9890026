#!/usr/bin/env python3
"""
Setup Verification Script

Validates configuration and connections before running the notifier.
Run this after setting up your .env file to ensure everything is configured correctly.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()


def print_header(title: str) -> None:
    """Print section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_result(name: str, success: bool, message: str = "") -> None:
    """Print check result."""
    status = "[PASS]" if success else "[FAIL]"
    color = "\033[92m" if success else "\033[91m"
    reset = "\033[0m"
    msg = f" - {message}" if message else ""
    print(f"  {color}{status}{reset} {name}{msg}")


def check_env_file() -> bool:
    """Check if .env file exists."""
    env_path = project_root / ".env"
    exists = env_path.exists()
    if not exists:
        print_result(".env file", False, "File not found. Defaults will be used")
    else:
        print_result(".env file", True, "Found")
    return exists


def check_required_vars() -> dict[str, bool]:
    """Check required environment variables."""
    results = {}

    required = [
        ("DATABASE_URL", "Required for PostgreSQL"),
        ("GATEWAY_URL", "Required for the messaging gateway"),
        ("ADMIN_API_KEY", "Required for the admin API outside development"),
    ]

    for var, description in required:
        value = os.getenv(var, "")

        if not value:
            print_result(var, False, f"Not set - {description}")
            results[var] = False
            continue

        # Mask sensitive values
        if "KEY" in var or "PASSWORD" in var:
            masked = f"{value[:3]}...{value[-3:]}" if len(value) > 10 else "***"
        elif var == "DATABASE_URL" and "@" in value:
            masked = value.split("@", 1)[1]
        else:
            masked = value
        print_result(var, True, f"Set ({masked})")
        results[var] = True

    return results


def check_optional_vars() -> None:
    """Check optional environment variables."""
    optional = [
        ("APP_ENV", "development"),
        ("DEBUG", "false"),
        ("PORT", "8080"),
        ("REDIS_URL", "redis://localhost:6379/0"),
        ("CREDENTIAL_BACKEND", "file"),
        ("DETECTION_STRATEGY", "poll"),
        ("GATEWAY_SESSION", "default"),
        ("COUNTRY_PREFIX", "55"),
    ]

    for var, default in optional:
        value = os.getenv(var, default)
        print_result(var, True, f"{value}")


async def check_postgres() -> bool:
    """Verify PostgreSQL connection."""
    try:
        from notifier.infra.database import check_db_health
        healthy = await check_db_health()

        if healthy:
            print_result("PostgreSQL", True, "Connection successful")
        else:
            print_result("PostgreSQL", False, "Connection failed")
        return healthy

    except Exception as e:
        print_result("PostgreSQL", False, str(e)[:50])
        return False


async def check_redis() -> bool:
    """Verify Redis connection."""
    try:
        from notifier.infra.redis import check_redis_health
        healthy = await check_redis_health()

        if healthy:
            print_result("Redis", True, "Connection successful")
        else:
            print_result("Redis", False, "Connection failed")
        return healthy

    except Exception as e:
        print_result("Redis", False, str(e)[:50])
        return False


async def check_gateway() -> bool:
    """Check if the messaging gateway is reachable and report the session status."""
    url = os.getenv("GATEWAY_URL", "http://localhost:3001")
    session = os.getenv("GATEWAY_SESSION", "default")

    try:
        import httpx

        async with httpx.AsyncClient(base_url=url, timeout=5.0) as client:
            response = await client.get(f"/sessions/{session}/status")

            if response.status_code == 200:
                state = response.json().get("status", "unknown")
                print_result("Messaging gateway", True, f"Reachable at {url} (session: {state})")
                return True
            elif response.status_code == 404:
                print_result("Messaging gateway", True, f"Reachable at {url} (session not created yet)")
                return True
            else:
                print_result("Messaging gateway", False, f"Responded with {response.status_code}")
                return False

    except Exception:
        print_result("Messaging gateway", False, f"Not reachable at {url}")
        return False


def check_dependencies() -> bool:
    """Check if required Python packages are installed."""
    required_packages = [
        "fastapi",
        "uvicorn",
        "pydantic",
        "pydantic_settings",
        "sqlalchemy",
        "asyncpg",
        "redis",
        "httpx",
        "apscheduler",
    ]

    missing = []
    for package in required_packages:
        try:
            __import__(package.replace("-", "_"))
        except ImportError:
            missing.append(package)

    if missing:
        print_result("Python packages", False, f"Missing: {', '.join(missing)}")
        return False
    else:
        print_result("Python packages", True, "All required packages installed")
        return True


async def main():
    """Run all verification checks."""
    print("\n" + "="*60)
    print(" Appointment Notifier - Setup Verification")
    print("="*60)

    all_passed = True
    critical_failed = False

    # Check .env file
    print_header("Environment File")
    if not check_env_file():
        all_passed = False

    # Check dependencies
    print_header("Python Dependencies")
    if not check_dependencies():
        all_passed = False
        critical_failed = True

    # Check required variables
    print_header("Required Environment Variables")
    var_results = check_required_vars()
    if not all(var_results.values()):
        all_passed = False

    # Check optional variables
    print_header("Optional Environment Variables")
    check_optional_vars()

    # Check services
    print_header("Service Connections")

    if not await check_postgres():
        all_passed = False
        critical_failed = True

    # Redis is only critical when it holds the pairing credentials
    if not await check_redis() and os.getenv("CREDENTIAL_BACKEND", "file") == "redis":
        all_passed = False
        critical_failed = True

    if not await check_gateway():
        all_passed = False
        critical_failed = True

    # Summary
    print_header("Summary")

    if critical_failed:
        print("\n  \033[91mCRITICAL: Some required services failed.\033[0m")
        print("  Please fix the issues above before running the application.")
        print()
        return 1
    elif not all_passed:
        print("\n  \033[93mWARNING: Some optional checks failed.\033[0m")
        print("  The application may run with limited functionality.")
        print()
        return 0
    else:
        print("\n  \033[92mAll checks passed!\033[0m")
        print("  You can start the application with:")
        print("    uvicorn notifier.main:app --reload")
        print()
        return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
