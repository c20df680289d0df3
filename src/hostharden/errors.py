# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/errors.py
class HardeningError(RuntimeError):
    """Base class for hardening failures."""


class ConfigError(HardeningError):
    """Raised when the configuration file is missing or invalid."""


class PreconditionError(HardeningError):
    """Raised when a controller-side input is unavailable before any host is touched."""


class TaskError(HardeningError):
    """Raised by a state assertion that could not converge its resource."""


class RebootTimeoutError(HardeningError):
    """Raised when a rebooted host does not come back within the timeout."""


class HostUnreachableError(HardeningError):
    """Raised when the SSH connection to a target cannot be established."""
