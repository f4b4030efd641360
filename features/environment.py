"""
Behave environment configuration for Zone Topology acceptance tests.
"""

import logging
import shutil
from pathlib import Path

import yaml

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def before_all(context):
    """Set up test environment before all tests."""
    context.base_dir = Path(__file__).parent.parent
    context.test_data_dir = context.base_dir / "test_data"
    context.test_data_dir.mkdir(exist_ok=True)

    context.test_zone = "example.com"
    context.test_config = {
        "resolver": {
            "resolver_mode": "dns",
            "max_resolution_hops": 15,
            "disable_geo_lookups": True,
        },
    }

    context.test_config_file = context.test_data_dir / "test_config.yaml"
    with open(context.test_config_file, "w") as f:
        yaml.dump(context.test_config, f)

    logger.info("Test environment setup complete")


def before_scenario(context, scenario):
    """Set up each test scenario."""
    context.scenario_name = scenario.name
    context.records = []
    context.answers = {}
    context.coordinator = None

    logger.info(f"Starting scenario: {scenario.name}")


def after_scenario(context, scenario):
    """Clean up after each test scenario."""
    gate = getattr(context, "gate", None)
    if gate is not None:
        gate.set()
    if context.coordinator is not None:
        context.coordinator.shutdown()

    logger.info(f"Completed scenario: {scenario.name}")


def after_all(context):
    """Clean up test environment after all tests."""
    if context.test_data_dir.exists():
        shutil.rmtree(context.test_data_dir)

    logger.info("Test environment cleanup complete")
