#!/usr/bin/env python3
"""
Execution gateway pre-flight checks.

Checks, in order:
- every gateway package imports
- config.yaml loads through src.core.config.load_config (credentials included)
- .env exists next to .env.example and holds no template values
- third-party distributions are importable
- .gitignore keeps .env out of version control
- optionally (--connect), each enabled trader answers a balance query

Exit status is 0 when every check passes.

Usage:
    python verify_setup.py
    python verify_setup.py --verbose --connect
"""

import argparse
import importlib
import sys
from pathlib import Path
from typing import Dict, List, Tuple


GATEWAY_PACKAGES = ("src.core", "src.execution", "src.processors")

# Distribution name -> import name
DEPENDENCY_MODULES: Dict[str, str] = {
    "python-binance": "binance",
    "loguru": "loguru",
    "pydantic": "pydantic",
    "pyyaml": "yaml",
    "python-dotenv": "dotenv",
    "requests": "requests",
    "eth-account": "eth_account",
    "eth-abi": "eth_abi",
    "eth-utils": "eth_utils",
    "hyperliquid-python-sdk": "hyperliquid",
}


class Colors:
    """ANSI escape sequences used by the report"""
    GREEN = '\033[92m'
    RED = '\033[91m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    BOLD = '\033[1m'
    RESET = '\033[0m'


def _paint(text: str, *styles: str) -> str:
    return f"{''.join(styles)}{text}{Colors.RESET}"


class EnvironmentValidator:
    """
    Runs the pre-flight checks and collects (name, passed, details) results.

    Each validate_* method records one or more results and returns whether
    its area is usable.
    """

    def __init__(self, verbose: bool = False, connect: bool = False):
        self.verbose = verbose
        self.connect = connect
        self.results: List[Tuple[str, bool, str]] = []
        self.project_root = Path(__file__).parent.resolve()

    def section(self, title: str):
        if self.verbose:
            print(_paint(f"-- {title}", Colors.BLUE))

    def hint(self, message: str):
        print(_paint(f"   hint: {message}", Colors.YELLOW))

    def add_result(self, test_name: str, passed: bool, details: str = ""):
        """Store a check outcome and echo it."""
        self.results.append((test_name, passed, details))
        badge = _paint("PASS", Colors.GREEN) if passed else _paint("FAIL", Colors.RED)
        print(f"[{badge}] {test_name}")
        if details and (self.verbose or not passed):
            print(f"       {details}")

    def validate_imports(self) -> bool:
        """Import each gateway package."""
        self.section("gateway packages")

        ok = True
        for package in GATEWAY_PACKAGES:
            try:
                importlib.import_module(package)
            except Exception as e:
                self.add_result(f"Import {package}", False, f"{type(e).__name__}: {e}")
                ok = False
            else:
                self.add_result(f"Import {package}", True, "importable")
        return ok

    def validate_config_yaml(self) -> bool:
        """Load config.yaml the way the gateway does, credentials included."""
        self.section("config.yaml")

        config_path = self.project_root / "config.yaml"
        if not config_path.exists():
            self.add_result("config.yaml exists", False, f"missing: {config_path}")
            return False
        self.add_result("config.yaml exists", True, str(config_path))

        from src.core.config import load_config
        from src.core.exceptions import ConfigurationError

        try:
            config = load_config(config_path, env_file=self.project_root / ".env")
        except ConfigurationError as e:
            self.add_result("config.yaml validates", False, str(e))
            return False

        enabled = config.enabled_traders()
        if not enabled:
            self.add_result("config.yaml enabled traders", False,
                            "every trader has enabled: false")
            return False

        summary = ", ".join(f"{t.id} ({t.exchange})" for t in enabled)
        self.add_result("config.yaml validates", True, f"enabled: {summary}")
        network = "testnet" if config.use_testnet else "MAINNET"
        self.add_result("config.yaml network", True, f"default network is {network}")
        return True

    def validate_env_file(self) -> bool:
        """Check .env against its template; a missing .env is only a warning."""
        self.section(".env")

        template = self.project_root / ".env.example"
        env_path = self.project_root / ".env"

        if not template.exists():
            self.add_result(".env.example exists", False, "template missing")
            return False
        self.add_result(".env.example exists", True, "template present")

        if not env_path.exists():
            self.add_result(".env exists", False, "credentials must come from the environment")
            self.hint("cp .env.example .env and fill in real values")
            return True
        self.add_result(".env exists", True, str(env_path))

        from dotenv import dotenv_values
        from src.core.config import is_placeholder

        leftovers = [
            name for name, value in dotenv_values(env_path).items()
            if value and is_placeholder(value)
        ]
        if leftovers:
            self.add_result(".env placeholders", False,
                            f"template values left in: {', '.join(leftovers)}")
        else:
            self.add_result(".env placeholders", True, "no template values")
        return True

    def validate_dependencies(self) -> bool:
        """Import every third-party distribution the gateway declares."""
        self.section("dependencies")

        missing = 0
        for dist, module in DEPENDENCY_MODULES.items():
            try:
                importlib.import_module(module)
            except ImportError as e:
                self.add_result(f"Dependency: {dist}", False, f"pip install {dist} ({e})")
                missing += 1
            else:
                self.add_result(f"Dependency: {dist}", True, f"import {module}")
        return missing == 0

    def validate_gitignore(self) -> bool:
        """Make sure .env cannot be committed."""
        self.section(".gitignore")

        path = self.project_root / ".gitignore"
        if not path.exists():
            self.add_result(".gitignore exists", False, "no .gitignore at project root")
            return False
        self.add_result(".gitignore exists", True, str(path))

        patterns = {line.strip() for line in path.read_text().splitlines()}
        protected = ".env" in patterns
        self.add_result(".gitignore excludes .env", protected,
                        "holds private keys and API secrets")
        return protected

    def validate_connectivity(self) -> bool:
        """Query the balance of every enabled trader (network access required)."""
        self.section("venue connectivity")

        from src.core.config import load_config
        from src.core.exceptions import GatewayError
        from src.execution import TraderManager

        try:
            manager = TraderManager.from_config(
                load_config(self.project_root / "config.yaml", env_file=self.project_root / ".env")
            )
        except GatewayError as e:
            self.add_result("traders constructed", False, str(e))
            return False

        ok = True
        for trader_id in manager.ids():
            try:
                balance = manager.get(trader_id).get_balance()
            except GatewayError as e:
                self.add_result(f"Balance: {trader_id}", False, str(e))
                ok = False
            else:
                self.add_result(f"Balance: {trader_id}", True,
                                f"available {balance.available_balance:.2f}")
        return ok

    def print_summary(self) -> bool:
        """Print totals and the failed checks; return True when nothing failed."""
        failures = [(name, details) for name, passed, details in self.results if not passed]
        passed = len(self.results) - len(failures)

        print()
        print(_paint("=" * 70, Colors.BOLD))
        print(_paint(f"{passed}/{len(self.results)} checks passed", Colors.BOLD))
        print(_paint("=" * 70, Colors.BOLD))

        if not failures:
            print(_paint("ALL CHECKS PASSED", Colors.GREEN, Colors.BOLD))
            return True

        print(_paint("SOME CHECKS FAILED", Colors.RED, Colors.BOLD))
        for name, details in failures:
            print(f"  - {name}" + (f": {details}" if details else ""))
        return False

    def run_all_validations(self) -> bool:
        """Run every check and print the summary."""
        print(_paint("Execution gateway pre-flight", Colors.BOLD))

        self.validate_imports()
        self.validate_config_yaml()
        self.validate_env_file()
        self.validate_dependencies()
        self.validate_gitignore()
        if self.connect:
            self.validate_connectivity()

        return self.print_summary()


def main():
    parser = argparse.ArgumentParser(description="Execution gateway pre-flight checks")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="show details for passing checks")
    parser.add_argument("--connect", action="store_true",
                        help="also query each enabled trader's balance")
    args = parser.parse_args()

    validator = EnvironmentValidator(verbose=args.verbose, connect=args.connect)
    try:
        ok = validator.run_all_validations()
    except KeyboardInterrupt:
        print(_paint("interrupted", Colors.YELLOW))
        sys.exit(130)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
