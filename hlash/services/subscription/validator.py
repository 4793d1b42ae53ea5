"""
Configuration Validator

Checks a Clash-style YAML config before it is allowed to go live.
"""

from pathlib import Path
from typing import Any

import yaml

from hlash.common.exceptions import ValidationError
from hlash.common.logging_setup import get_service_logger

logger = get_service_logger("subscription.validator")

PORT_KEYS = ("port", "socks-port", "redir-port", "tproxy-port", "mixed-port")

# Built-in policy targets that need no proxy definition
BUILTIN_TARGETS = {"DIRECT", "REJECT", "REJECT-DROP", "PASS", "GLOBAL"}

# Group types allowed to omit `proxies` (they take a provider instead)
PROVIDER_GROUP_KEYS = ("use", "include-all", "include-all-proxies")


class ConfigValidator:
    """Validates engine configuration files"""

    def validate_file(self, path: str | Path) -> dict[str, Any]:
        """
        Parse and validate the config file at `path`.

        Returns:
            The parsed config mapping

        Raises:
            ValidationError: listing every problem found
        """
        path = Path(path)
        try:
            # Bytes in, so PyYAML does the decoding and reports bad encodings
            with open(path, "rb") as f:
                config = yaml.safe_load(f)
        except FileNotFoundError:
            raise ValidationError(str(path), ["file not found"])
        except OSError as e:
            raise ValidationError(str(path), [f"unreadable: {e}"]) from e
        except yaml.YAMLError as e:
            raise ValidationError(str(path), [f"YAML parse error: {e}"]) from e
        except UnicodeDecodeError as e:
            raise ValidationError(str(path), [f"not valid text: {e}"]) from e

        errors = self.validate(config)
        if errors:
            logger.warning(
                f"Config validation failed: {len(errors)} errors",
                extra={"errors": errors, "path": str(path)},
            )
            raise ValidationError(str(path), errors)

        logger.debug(f"Config validation passed: {path}")
        return config

    def validate(self, config: Any) -> list[str]:
        """
        Validate an already parsed config.

        Returns:
            List of error messages (empty when valid)
        """
        if not isinstance(config, dict):
            return ["config must be a mapping"]

        errors: list[str] = []
        errors.extend(self._validate_ports(config))

        proxy_names, proxy_errors = self._validate_proxies(config.get("proxies"))
        errors.extend(proxy_errors)

        group_names, group_errors = self._validate_groups(config.get("proxy-groups"), proxy_names)
        errors.extend(group_errors)

        errors.extend(self._validate_rules(config.get("rules")))

        if not proxy_names and not group_names and not config.get("proxy-providers"):
            # Subscription responses that are not configs (HTML login pages,
            # base64 node lists) land here
            if not any(key in config for key in PORT_KEYS):
                errors.append("no proxies, proxy-groups or ports defined")

        return errors

    def _validate_ports(self, config: dict) -> list[str]:
        errors = []
        for key in PORT_KEYS:
            if key not in config:
                continue
            value = config[key]
            if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= 65535:
                errors.append(f"{key} must be a port number (0-65535), got {value!r}")
        return errors

    def _validate_proxies(self, proxies: Any) -> tuple[set[str], list[str]]:
        names: set[str] = set()
        errors: list[str] = []

        if proxies is None:
            return names, errors
        if not isinstance(proxies, list):
            return names, ["proxies must be a list"]

        for i, proxy in enumerate(proxies):
            if not isinstance(proxy, dict):
                errors.append(f"proxies[{i}] must be a mapping")
                continue

            name = proxy.get("name")
            for key in ("name", "type", "server", "port"):
                if key not in proxy or proxy[key] in (None, ""):
                    errors.append(f"proxies[{i}] ({name or '?'}) missing {key}")

            port = proxy.get("port")
            if port is not None and not self._is_port(port):
                errors.append(f"proxies[{i}] ({name or '?'}) has invalid port {port!r}")

            if name:
                if name in names:
                    errors.append(f"duplicate proxy name: {name}")
                names.add(str(name))

        return names, errors

    def _validate_groups(self, groups: Any, proxy_names: set[str]) -> tuple[set[str], list[str]]:
        names: set[str] = set()
        errors: list[str] = []

        if groups is None:
            return names, errors
        if not isinstance(groups, list):
            return names, ["proxy-groups must be a list"]

        for group in groups:
            if isinstance(group, dict) and group.get("name"):
                names.add(str(group["name"]))

        known = proxy_names | names | BUILTIN_TARGETS
        for i, group in enumerate(groups):
            if not isinstance(group, dict):
                errors.append(f"proxy-groups[{i}] must be a mapping")
                continue

            name = group.get("name") or "?"
            if not group.get("name"):
                errors.append(f"proxy-groups[{i}] missing name")
            if not group.get("type"):
                errors.append(f"proxy-groups[{i}] ({name}) missing type")

            members = group.get("proxies")
            if members is None:
                if not any(group.get(key) for key in PROVIDER_GROUP_KEYS):
                    errors.append(f"proxy-groups[{i}] ({name}) has no proxies")
                continue
            if not isinstance(members, list):
                errors.append(f"proxy-groups[{i}] ({name}) proxies must be a list")
                continue

            for member in members:
                if str(member) not in known:
                    errors.append(f"proxy-groups[{i}] ({name}) references unknown proxy {member!r}")

        return names, errors

    def _validate_rules(self, rules: Any) -> list[str]:
        if rules is None:
            return []
        if not isinstance(rules, list):
            return ["rules must be a list"]
        return [
            f"rules[{i}] must be a string"
            for i, rule in enumerate(rules)
            if not isinstance(rule, str)
        ]

    @staticmethod
    def _is_port(value: Any) -> bool:
        if isinstance(value, bool):
            return False
        try:
            port = int(value)
        except (TypeError, ValueError):
            return False
        return 0 < port <= 65535
