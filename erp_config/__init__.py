"""
erp_config -- single public entrypoint for permission and workflow configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a ``CompiledWorkflowConfig`` holding
    the immutable permission table and the workflow settings.

Architecture position:
    Configuration.  Sits above ``erp_kernel`` (it builds kernel domain
    objects) and below ``erp_services``.  The kernel never imports from
    this package; the table is injected into ``PermissionEngine``.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``ERP_CONFIG_TRACE`` log entry with the version and checksum, tying each
    authorization decision to the table that governed it.
"""

from __future__ import annotations

from pathlib import Path

from erp_config.loader import compile_config, load_yaml_file
from erp_config.schema import CompiledWorkflowConfig, WorkflowSettings
from erp_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> CompiledWorkflowConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a YAML configuration file.
            Defaults to ``erp_config/sets/default.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        PermissionConfigError: If the file is structurally invalid or names
            unknown modules, actions, roles or settings.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = compile_config(load_yaml_file(path), source=str(path))

    _logger.info(
        "ERP_CONFIG_TRACE",
        extra={
            "trace_type": "ERP_CONFIG_TRACE",
            "config_source": config.source,
            "config_version": config.version,
            "checksum": config.checksum,
            "role_count": len(config.permission_table.roles),
            "grant_count": len(config.permission_table.grants),
        },
    )
    return config


__all__ = ["CompiledWorkflowConfig", "WorkflowSettings", "get_active_config"]
