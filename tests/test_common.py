#!/usr/bin/env python3
"""Tests for common.py - shared utilities and error types.

Tests verify:
1. run_command execution and error handling
2. Timeout behavior
3. Error messages carry their diagnostics
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import pytest
from common import (
    HarnessError,
    MalformedPlanReport,
    MissingOutputError,
    ProvisioningError,
    ValidationTimeout,
    run_command,
)


class TestRunCommand:
    """Test run_command utility."""

    def test_returns_success_tuple(self):
        """Should return (returncode, stdout, stderr) on success."""
        rc, stdout, stderr = run_command(['echo', 'hello'])
        assert rc == 0
        assert 'hello' in stdout
        assert stderr == ''

    def test_returns_failure_tuple(self):
        rc, stdout, stderr = run_command(['false'])
        assert rc != 0

    def test_captures_stderr(self):
        rc, stdout, stderr = run_command(['sh', '-c', 'echo error >&2'])
        assert 'error' in stderr

    def test_respects_cwd(self, tmp_path):
        (tmp_path / 'main.tf').write_text('found')
        rc, stdout, stderr = run_command(['cat', 'main.tf'], cwd=tmp_path)
        assert rc == 0
        assert 'found' in stdout

    def test_timeout_returns_error(self):
        rc, stdout, stderr = run_command(['sleep', '10'], timeout=1)
        assert rc == -1
        assert 'timed out' in stderr.lower()

    def test_missing_binary_returns_error(self):
        rc, stdout, stderr = run_command(['definitely-not-a-provisioning-engine', 'init'])
        assert rc == -1
        assert stderr

    def test_passes_env_vars(self):
        import os
        custom_env = os.environ.copy()
        custom_env['TF_DATA_DIR'] = '/tmp/data'
        rc, stdout, stderr = run_command(['sh', '-c', 'echo $TF_DATA_DIR'], env=custom_env)
        assert rc == 0
        assert '/tmp/data' in stdout


class TestErrors:
    """Test harness error types."""

    def test_all_are_harness_errors(self):
        for cls in (ProvisioningError, MissingOutputError, ValidationTimeout, MalformedPlanReport):
            assert issubclass(cls, HarnessError)

    def test_provisioning_error_carries_output(self):
        err = ProvisioningError(['tofu', 'apply'], 1, 'partial', 'Error: AccessDenied')
        assert err.returncode == 1
        assert err.stdout == 'partial'
        assert 'tofu apply failed (exit 1)' in str(err)
        assert 'AccessDenied' in str(err)

    def test_provisioning_error_falls_back_to_stdout(self):
        err = ProvisioningError(['tofu', 'init'], 1, 'Error: backend', '')
        assert 'Error: backend' in str(err)

    def test_missing_output_lists_available(self):
        err = MissingOutputError('alb_dns_name', ['b', 'a'])
        assert err.available == ['a', 'b']
        assert 'a, b' in str(err)

    def test_validation_timeout_message(self):
        err = ValidationTimeout('http://alb', 10, last_outcome='HTTP 502')
        assert '10 attempt(s)' in str(err)
        assert 'HTTP 502' in str(err)

    def test_validation_timeout_without_outcome(self):
        assert 'no outcome' in str(ValidationTimeout('http://alb', 1))
