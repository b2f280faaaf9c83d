"""End-to-end tests against the example configurations.

These provision real AWS resources and are skipped unless the engine
binary, the examples directory and AWS credentials are all available.
Every test that applies does so inside provisioned(), so resources are
destroyed whether the assertions pass or not.

Run in parallel with: pytest -n auto -m requires_infrastructure
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from config import load_config
from http_helper import http_get_with_retry, http_get_with_retry_custom_validation
from plan import PlanSummary, lookup_attribute
from random_id import unique_id
from tofu import Lifecycle, ProvisioningOptions, provisioned

pytestmark = pytest.mark.requires_infrastructure

MAX_RETRIES = 10
TIME_BETWEEN_RETRIES = 10


@pytest.fixture(scope='module')
def config():
    return load_config()


def test_alb_example(config):
    """Deploy the ALB and check its default action answers 404."""
    opts = ProvisioningOptions(
        config_dir=config.example_dir('alb'),
        variables={'alb_name': f'test-{unique_id()}'},
    )

    with provisioned(opts, config) as lifecycle:
        url = f"http://{lifecycle.output_required('alb_dns_name')}"
        http_get_with_retry(
            url,
            expected_status=404,
            expected_body='404: page not found',
            max_attempts=MAX_RETRIES,
            interval=TIME_BETWEEN_RETRIES,
        )


def test_alb_example_plan(config):
    """Plan only: check counts and a planned attribute without deploying."""
    alb_name = f'test-{unique_id()}'
    opts = ProvisioningOptions(
        config_dir=config.example_dir('alb'),
        variables={'alb_name': alb_name},
    )

    lifecycle = Lifecycle(opts, config)
    try:
        report = lifecycle.init_and_plan()
    finally:
        lifecycle.discard()

    assert report.summary == PlanSummary(add=5, change=0, destroy=0)

    resources = report.planned_values
    assert 'module.alb.aws_lb.example' in resources, 'aws_lb resource must exist'
    name, found = lookup_attribute(resources, 'module.alb.aws_lb.example', 'name')
    assert found, 'missing name parameter'
    assert name == alb_name


def test_asg_example(config):
    """No runtime assertions: init, apply and destroy must all succeed."""
    opts = ProvisioningOptions(
        config_dir=config.example_dir('asg'),
        variables={'cluster_name': f'test-{unique_id()}'},
    )

    with provisioned(opts, config):
        pass


def test_hello_world_app_example(config):
    """Deploy the app tier with a stubbed database and fetch the page."""
    opts = ProvisioningOptions(
        config_dir=config.example_dir('hello-world-app') / 'standalone',
        variables={
            'mysql_config': {
                'address': 'mock-value-for-test',
                'port': 3306,
            },
            'environment': f'test-{unique_id()}',
        },
    )

    with provisioned(opts, config) as lifecycle:
        url = f"http://{lifecycle.output_required('alb_dns_name')}"
        http_get_with_retry_custom_validation(
            url,
            max_attempts=MAX_RETRIES,
            interval=TIME_BETWEEN_RETRIES,
            validate_fn=lambda status, body: status == 200 and 'Hello, World' in body,
        )
