"""OpenTofu / Terraform lifecycle for test cases.

Each test case builds its own ProvisioningOptions and drives the engine
through init → apply|plan → destroy. provisioned() wraps the whole
sequence so that teardown runs on every exit path:

    opts = ProvisioningOptions(config_dir=examples / 'alb',
                               variables={'alb_name': f'test-{unique_id()}'})
    with provisioned(opts) as lifecycle:
        url = f"http://{lifecycle.output_required('alb_dns_name')}"
        ...
"""

import copy
import enum
import json
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional

from common import MissingOutputError, ProvisioningError, run_command
from config import HarnessConfig, load_config
from plan import PlanReport, parse_plan_report
from random_id import unique_id

logger = logging.getLogger(__name__)


class LifecycleState(enum.Enum):
    NOT_INITIALIZED = 'not-initialized'
    INITIALIZED = 'initialized'
    APPLIED = 'applied'
    PLANNED = 'planned'
    DESTROYED = 'destroyed'


@dataclass(frozen=True)
class ProvisioningOptions:
    """Inputs for one lifecycle invocation.

    namespace isolates this invocation's state directory from every other
    invocation against the same config_dir; callers typically also embed a
    unique_id() in resource names through variables.
    """
    config_dir: Path
    variables: dict = field(default_factory=dict)
    env: dict = field(default_factory=dict)
    namespace: str = field(default_factory=unique_id)
    binary: Optional[str] = None     # Defaults to HarnessConfig.binary
    state_dir: Optional[Path] = None  # Defaults to <state_root>/<label>
    lock: bool = True

    def __post_init__(self):
        config_dir = Path(self.config_dir)
        if not config_dir.is_dir():
            raise ValueError(f"Configuration directory not found: {config_dir}")
        object.__setattr__(self, 'config_dir', config_dir)
        # Private copies: later mutation by the caller must not leak in
        object.__setattr__(self, 'variables', copy.deepcopy(dict(self.variables)))
        object.__setattr__(self, 'env', {str(k): str(v) for k, v in self.env.items()})
        if self.state_dir is not None:
            object.__setattr__(self, 'state_dir', Path(self.state_dir))

    @property
    def label(self) -> str:
        """Log prefix and state directory name, e.g. 'alb-k3x9qa'."""
        return f"{self.config_dir.name}-{self.namespace}"


def create_temp_tfvars(label: str) -> Path:
    """Create a unique temporary file for tfvars.

    Unique per call so concurrent invocations never share a var-file.
    Caller is responsible for cleanup.
    """
    fd, path = tempfile.mkstemp(prefix=f'tfvars-{label}-', suffix='.tfvars.json')
    os.close(fd)
    return Path(path)


class Lifecycle:
    """Engine state machine for one ProvisioningOptions.

    NOT_INITIALIZED → INITIALIZED → {APPLIED | PLANNED} → DESTROYED.
    destroy() is accepted from any state and is idempotent.
    """

    def __init__(self, options: ProvisioningOptions, config: Optional[HarnessConfig] = None):
        self.options = options
        self.config = config or load_config()
        self.state = LifecycleState.NOT_INITIALIZED
        self.binary = options.binary or self.config.binary

        # State isolation: each invocation gets its own state directory.
        # TF_DATA_DIR must NOT contain the state file, otherwise OpenTofu's
        # legacy code path reads it and rejects version 4 states, so
        # modules/providers go to a 'data/' subdirectory.
        self.state_dir = options.state_dir or self.config.state_root / options.label
        self.data_dir = self.state_dir / 'data'
        self.state_file = self.state_dir / 'terraform.tfstate'
        self.plan_file = self.state_dir / 'tfplan'

    @property
    def name(self) -> str:
        return self.options.label

    def _env(self) -> dict:
        return {
            **os.environ,
            **self.options.env,
            'TF_DATA_DIR': str(self.data_dir),
            'TF_IN_AUTOMATION': '1',
        }

    def _run(self, args: list[str], timeout: int, with_vars: bool = False) -> str:
        """Run one engine command in the config directory; raise on failure."""
        cmd = [self.binary] + args
        tfvars_path = None
        if with_vars:
            tfvars_path = create_temp_tfvars(self.name)
            tfvars_path.write_text(json.dumps(self.options.variables, indent=2), encoding='utf-8')
            cmd.append(f'-var-file={tfvars_path}')
        try:
            rc, out, err = run_command(cmd, cwd=self.options.config_dir, timeout=timeout, env=self._env())
        finally:
            if tfvars_path and tfvars_path.exists():
                tfvars_path.unlink()
                logger.debug(f"[{self.name}] Cleaned up temp tfvars: {tfvars_path}")
        if rc != 0:
            logger.error(f"[{self.name}] {self.binary} {args[0]} failed (exit {rc})")
            raise ProvisioningError(cmd, rc, out, err)
        return out

    def _lock_arg(self) -> str:
        return f'-lock={str(self.options.lock).lower()}'

    def init(self) -> str:
        """Run init into this invocation's data directory."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[{self.name}] Running {self.binary} init...")
        out = self._run(['init', '-input=false', '-no-color'], timeout=self.config.timeouts.init)
        self.state = LifecycleState.INITIALIZED
        return out

    def _ensure_initialized(self) -> None:
        if self.state is LifecycleState.NOT_INITIALIZED:
            self.init()

    def apply(self) -> str:
        """Apply the configuration with the invocation's variables."""
        self._ensure_initialized()
        logger.info(f"[{self.name}] Running {self.binary} apply (state: {self.state_file})...")
        out = self._run(
            ['apply', '-auto-approve', '-input=false', '-no-color', self._lock_arg(),
             f'-state={self.state_file}'],
            timeout=self.config.timeouts.apply,
            with_vars=True,
        )
        self.state = LifecycleState.APPLIED
        return out

    def plan_text(self) -> str:
        """Write a plan file and return the human-readable plan output."""
        self._ensure_initialized()
        logger.info(f"[{self.name}] Running {self.binary} plan...")
        out = self._run(
            ['plan', '-input=false', '-no-color', self._lock_arg(),
             f'-state={self.state_file}', f'-out={self.plan_file}'],
            timeout=self.config.timeouts.plan,
            with_vars=True,
        )
        self.state = LifecycleState.PLANNED
        return out

    def plan(self) -> PlanReport:
        """Plan and return the structured plan report."""
        self.plan_text()
        out = self._run(['show', '-json', '-no-color', str(self.plan_file)],
                        timeout=self.config.timeouts.plan)
        return parse_plan_report(out)

    def destroy(self) -> str:
        """Destroy everything in this invocation's state.

        No state file means nothing was ever applied; that is success.
        """
        if not self.state_file.exists():
            logger.info(f"[{self.name}] No state found at {self.state_file}, nothing to destroy")
            self.state = LifecycleState.DESTROYED
            return ''

        self._ensure_initialized()
        logger.info(f"[{self.name}] Running {self.binary} destroy (state: {self.state_file})...")
        out = self._run(
            ['destroy', '-auto-approve', '-input=false', '-no-color', self._lock_arg(),
             f'-state={self.state_file}'],
            timeout=self.config.timeouts.destroy,
            with_vars=True,
        )
        if self.plan_file.exists():
            self.plan_file.unlink()
        self.state = LifecycleState.DESTROYED
        return out

    def discard(self) -> None:
        """Remove the state directory of a plan-only invocation.

        Refuses to touch a directory holding a state file: that state may
        still track live resources and must go through destroy() first.
        """
        if self.state_file.exists() and self.state is not LifecycleState.DESTROYED:
            logger.warning(f"[{self.name}] Keeping {self.state_dir}: state file present, destroy first")
            return
        if self.state_dir.exists():
            shutil.rmtree(self.state_dir)
            logger.debug(f"[{self.name}] Removed {self.state_dir}")

    def outputs(self) -> dict[str, Any]:
        """All outputs of the applied state as decoded JSON values."""
        if not self.state_file.exists():
            return {}
        cmd_args = ['output', '-json', '-no-color', f'-state={self.state_file}']
        out = self._run(cmd_args, timeout=self.config.timeouts.output)
        try:
            raw = json.loads(out or '{}')
        except json.JSONDecodeError as e:
            raise ProvisioningError([self.binary] + cmd_args, 0, out, f"invalid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise ProvisioningError([self.binary] + cmd_args, 0, out, "expected a JSON object of outputs")
        return {name: entry.get('value') for name, entry in raw.items() if isinstance(entry, dict)}

    def output(self, name: str) -> Any:
        """Value of one output; MissingOutputError if it is not declared."""
        values = self.outputs()
        if name not in values:
            raise MissingOutputError(name, list(values))
        return values[name]

    def output_required(self, name: str) -> Any:
        """Like output(), but None or an empty string also count as missing."""
        value = self.output(name)
        if value is None or value == '':
            raise MissingOutputError(name, [name])
        return value

    def init_and_apply(self) -> str:
        self.init()
        return self.apply()

    def init_and_plan(self) -> PlanReport:
        self.init()
        return self.plan()


def init_and_apply(options: ProvisioningOptions, config: Optional[HarnessConfig] = None) -> str:
    """Run init and apply; raises ProvisioningError on engine failure."""
    return Lifecycle(options, config).init_and_apply()


def init_and_plan(options: ProvisioningOptions, config: Optional[HarnessConfig] = None) -> PlanReport:
    """Run init and plan; return the structured plan report."""
    return Lifecycle(options, config).init_and_plan()


def init_and_plan_text(options: ProvisioningOptions, config: Optional[HarnessConfig] = None) -> str:
    """Run init and plan; return the plan's stdout."""
    lifecycle = Lifecycle(options, config)
    lifecycle.init()
    return lifecycle.plan_text()


def destroy(options: ProvisioningOptions, config: Optional[HarnessConfig] = None) -> str:
    """Idempotent teardown of the options' state."""
    return Lifecycle(options, config).destroy()


def get_outputs(options: ProvisioningOptions, config: Optional[HarnessConfig] = None) -> dict[str, Any]:
    return Lifecycle(options, config).outputs()


def get_output(options: ProvisioningOptions, name: str, config: Optional[HarnessConfig] = None) -> Any:
    """Value of a named output; MissingOutputError if absent."""
    return Lifecycle(options, config).output(name)


def output_required(options: ProvisioningOptions, name: str, config: Optional[HarnessConfig] = None) -> Any:
    return Lifecycle(options, config).output_required(name)


def _destroy_after_failure(lifecycle: Lifecycle) -> None:
    """Teardown while another exception is propagating; never masks it."""
    try:
        lifecycle.destroy()
    except Exception as e:
        logger.error(f"[{lifecycle.name}] Teardown failed, resources may be leaked: {e}")


@contextmanager
def provisioned(options: ProvisioningOptions, config: Optional[HarnessConfig] = None) -> Iterator[Lifecycle]:
    """Apply on entry and destroy on every exit path.

    Teardown also runs when apply itself fails, since a partial apply can
    leave resources behind. If the body (or apply) raised, that exception
    is what propagates and a teardown failure is only logged; on the
    success path a teardown failure is raised.
    """
    lifecycle = Lifecycle(options, config)
    try:
        lifecycle.init_and_apply()
        yield lifecycle
    except BaseException:
        _destroy_after_failure(lifecycle)
        raise
    else:
        lifecycle.destroy()
