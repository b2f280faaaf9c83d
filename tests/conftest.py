"""Shared pytest fixtures for infratest-driver tests."""

import os
import shutil
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))


def _has_infrastructure():
    """Check if a provisioning engine and cloud credentials are available."""
    try:
        from config import load_config
        config = load_config()
    except Exception:
        return False
    if shutil.which(config.binary) is None:
        return False
    if not config.examples_dir.is_dir():
        return False
    return bool(
        os.environ.get('AWS_ACCESS_KEY_ID')
        or os.environ.get('AWS_PROFILE')
        or os.environ.get('AWS_WEB_IDENTITY_TOKEN_FILE')
    )


def pytest_collection_modifyitems(config, items):
    """Skip tests marked with requires_infrastructure when infra not available."""
    if _has_infrastructure():
        return
    skip_marker = pytest.mark.skip(reason="requires infrastructure (engine binary, examples dir, AWS credentials)")
    for item in items:
        if "requires_infrastructure" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def example_dir(tmp_path):
    """Minimal configuration directory (contents never read by mocked runs)."""
    path = tmp_path / 'examples' / 'alb'
    path.mkdir(parents=True)
    (path / 'main.tf').write_text('variable "alb_name" {}\n')
    return path


@pytest.fixture
def harness_config(tmp_path):
    """HarnessConfig with state kept under tmp_path."""
    from config import HarnessConfig
    return HarnessConfig(
        binary='tofu',
        state_root=tmp_path / '.states',
        examples_dir=tmp_path / 'examples',
    )


@pytest.fixture
def alb_plan_report():
    """Plan JSON for the ALB example: five resources, all inside module.alb."""
    def resource(rtype, name, values):
        return {
            'address': f'module.alb.{rtype}.{name}',
            'mode': 'managed',
            'type': rtype,
            'name': name,
            'provider_name': 'registry.opentofu.org/hashicorp/aws',
            'values': values,
        }

    def change(rtype, name, actions):
        return {
            'address': f'module.alb.{rtype}.{name}',
            'module_address': 'module.alb',
            'mode': 'managed',
            'type': rtype,
            'name': name,
            'change': {'actions': actions, 'before': None, 'after': {}},
        }

    resources = [
        ('aws_lb', 'example', {'name': 'test-xyz', 'load_balancer_type': 'application', 'internal': False}),
        ('aws_lb_listener', 'http', {'port': 80, 'protocol': 'HTTP'}),
        ('aws_security_group', 'alb', {'name': 'test-xyz'}),
        ('aws_security_group_rule', 'allow_http_inbound', {'from_port': 80, 'type': 'ingress'}),
        ('aws_security_group_rule', 'allow_all_outbound', {'from_port': 0, 'type': 'egress'}),
    ]
    return {
        'format_version': '1.2',
        'terraform_version': '1.8.0',
        'planned_values': {
            'root_module': {
                'child_modules': [{
                    'address': 'module.alb',
                    'resources': [resource(t, n, v) for t, n, v in resources],
                }],
            },
            'outputs': {'alb_dns_name': {'sensitive': False}},
        },
        'resource_changes': [change(t, n, ['create']) for t, n, _ in resources],
    }
