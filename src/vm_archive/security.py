"""
Security utilities for VM archive operations.

This module provides input validation, command building, and path security
functions for identities that end up as directory names, object-store
prefixes or xo-cli arguments.
"""

import re
from pathlib import Path
from typing import List, Optional, Any

from .exceptions import ValidationError


class SecurityValidator:
    """Security validation utilities."""

    # Identities become directory names and key prefixes
    IDENTITY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 ._@+-]*$")
    OBJECT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
    ALNUM_PATTERN = re.compile(r"[A-Za-z0-9]")

    @staticmethod
    def validate_identity(identity: str) -> str:
        """
        Validate a VM id or archive name used to key staging and remote storage.

        Args:
            identity: VM id or archive name

        Returns:
            str: Validated identity

        Raises:
            ValidationError: If the identity could escape its directory or prefix
        """
        if not identity or not isinstance(identity, str):
            raise ValidationError("Identity must be a non-empty string", "identity")

        if len(identity) > 255:
            raise ValidationError("Identity must be 255 characters or less", "identity")

        if ".." in identity or not SecurityValidator.IDENTITY_PATTERN.fullmatch(identity):
            raise ValidationError(
                f"Identity '{identity}' may only contain letters, numbers, spaces "
                "and the characters . _ @ + -",
                "identity",
            )

        return identity

    @staticmethod
    def is_well_formed_id(value: Optional[str]) -> bool:
        """Return True for a non-empty object id containing at least one alphanumeric."""
        if not value or not isinstance(value, str):
            return False
        value = value.strip()
        return bool(value) and bool(SecurityValidator.ALNUM_PATTERN.search(value)) and bool(
            SecurityValidator.OBJECT_ID_PATTERN.fullmatch(value)
        )

    @staticmethod
    def validate_object_id(value: str, kind: str = "object") -> str:
        """
        Validate a control-plane object id (VM, SR, VDI).

        Raises:
            ValidationError: If the id is empty or malformed
        """
        if not SecurityValidator.is_well_formed_id(value):
            raise ValidationError(f"Malformed {kind} id: {value!r}", kind)
        return value.strip()

    @staticmethod
    def sanitize_path(path: str, base_dir: Optional[str] = None) -> str:
        """
        Sanitize and validate file path to prevent path traversal attacks.

        Args:
            path: File path to sanitize
            base_dir: Base directory to restrict access to

        Returns:
            str: Sanitized path

        Raises:
            ValidationError: If path is invalid or attempts traversal
        """
        if not path or not isinstance(path, str):
            raise ValidationError("Path must be a non-empty string", "path")

        path_obj = Path(path).expanduser()

        if base_dir:
            base_path = Path(base_dir).expanduser().resolve()
            try:
                resolved_path = (base_path / path_obj).resolve()
            except (OSError, ValueError) as e:
                raise ValidationError(f"Invalid path: {path}", "path") from e
            if resolved_path != base_path and base_path not in resolved_path.parents:
                raise ValidationError(f"Path traversal detected: {path}", "path")
            return str(resolved_path)

        try:
            return str(path_obj.resolve())
        except (OSError, ValueError) as e:
            raise ValidationError(f"Invalid path: {path}", "path") from e


class CommandBuilder:
    """Argument-vector builders for xo-cli calls."""

    VALID_METHODS = {
        "vm.export",
        "vm.import",
        "vm.delete",
    }

    @staticmethod
    def _format_value(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @staticmethod
    def build_xo_command(xo_cli: str, method: str, **params: Any) -> List[str]:
        """
        Build an xo-cli argument vector for an API method call.

        Parameters named ``at`` are passed as xo-cli's ``@=<file>`` stream
        argument.

        Args:
            xo_cli: xo-cli executable
            method: API method (e.g., "vm.export")
            **params: Method parameters

        Returns:
            List[str]: Argument vector, never passed through a shell
        """
        if method not in CommandBuilder.VALID_METHODS:
            raise ValidationError(f"Invalid xo-cli method: {method}", "command")

        argv = [xo_cli, method]
        for key, value in params.items():
            if value is None:
                continue
            name = "@" if key == "at" else key
            argv.append(f"{name}={CommandBuilder._format_value(value)}")
        return argv

    @staticmethod
    def build_list_objects_command(xo_cli: str, **filters: Any) -> List[str]:
        """Build an ``xo-cli --list-objects`` argument vector."""
        argv = [xo_cli, "--list-objects"]
        for key, value in filters.items():
            if value is None:
                continue
            argv.append(f"{key}={CommandBuilder._format_value(value)}")
        return argv
