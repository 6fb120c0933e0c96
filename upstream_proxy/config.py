"""Configuration handling for proxy server.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from upstream_proxy.proxy import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

CATCH_ALL_PATH = "/{tail:.*}"

# Keys an included route inherits from the include entry
INHERITED_ROUTE_KEYS = ("to", "timeout", "before", "after")


class Config:
    """Configuration container for proxy server."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
        to: Optional[str] = None,
        at: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        hooks_dir: Optional[str] = None,
        log_level: str = "INFO",
        routes: Optional[List[Dict[str, Any]]] = None,
    ):
        """Initialize configuration.

        Args:
            host: Host to bind the proxy server to
            port: Port to bind the proxy server to
            to: Default upstream, used for the catch-all route
            at: Path template for the catch-all route
            timeout: Upstream timeout in milliseconds
            hooks_dir: Directory containing hook modules
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            routes: Explicit route list (path, to, at, timeout, before, after)
        """
        self.host = host
        self.port = port
        self.to = to
        self.at = at
        self.timeout = DEFAULT_TIMEOUT if timeout is None else timeout
        self.hooks_dir = hooks_dir
        self.log_level = log_level
        self.routes = routes or []

    @classmethod
    def _process_route_includes(
        cls, routes: List[Dict[str, Any]], config_dir: Path
    ) -> List[Dict[str, Any]]:
        """Process include directives in the route list.

        An entry ``{include: "users.yaml", to: "users.svc:8080"}`` is replaced
        by the routes listed in ``users.yaml``; each included route inherits
        ``to``, ``timeout``, ``before`` and ``after`` unless it sets its own.

        Args:
            routes: Route configurations
            config_dir: Directory containing the main config file

        Returns:
            Expanded list of routes with includes resolved
        """
        expanded_routes = []

        for route in routes:
            if "include" not in route:
                expanded_routes.append(route)
                continue

            include_file = route["include"]
            if not Path(include_file).is_absolute():
                include_path = config_dir / include_file
            else:
                include_path = Path(include_file)

            try:
                logger.info(f"Loading routes from {include_path}")
                with open(include_path) as f:
                    included_routes = yaml.safe_load(f)

                if not isinstance(included_routes, list):
                    logger.error(f"Include file {include_path} must contain a list of routes")
                    continue

                for included_route in included_routes:
                    if not isinstance(included_route, dict):
                        logger.warning(f"Skipping invalid route in {include_path}: {included_route}")
                        continue

                    for key in INHERITED_ROUTE_KEYS:
                        if key in route and key not in included_route:
                            included_route[key] = route[key]
                    expanded_routes.append(included_route)

                logger.info(f"Loaded {len(included_routes)} routes from {include_path}")

            except FileNotFoundError:
                logger.error(f"Include file not found: {include_path}")
            except yaml.YAMLError as e:
                logger.error(f"Error parsing include file {include_path}: {e}")

        return expanded_routes

    @classmethod
    def from_file(cls, config_path: str) -> "Config":
        """Load configuration from YAML file.

        Args:
            config_path: Path to configuration file

        Returns:
            Config instance
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if "routes" in data:
            data["routes"] = cls._process_route_includes(data["routes"] or [], path.parent)

        return cls(**data)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config instance
        """
        return cls(
            host=os.getenv("PROXY_HOST", "0.0.0.0"),
            port=int(os.getenv("PROXY_PORT", "8080")),
            to=os.getenv("PROXY_TO"),
            at=os.getenv("PROXY_AT"),
            timeout=int(os.getenv("PROXY_TIMEOUT", str(DEFAULT_TIMEOUT))),
            hooks_dir=os.getenv("PROXY_HOOKS_DIR"),
            log_level=os.getenv("PROXY_LOG_LEVEL", "INFO"),
        )

    def route_configs(self) -> List[Dict[str, Any]]:
        """Return the routes to serve.

        Explicit routes win; otherwise a single catch-all route is built
        from ``to``/``at``/``timeout``. Routes without a timeout get the
        global one; an explicit null counts as unset.
        """
        if self.routes:
            routes = [dict(route) for route in self.routes]
        elif self.to:
            routes = [{"path": CATCH_ALL_PATH, "to": self.to, "at": self.at}]
        else:
            routes = []

        for route in routes:
            route.setdefault("path", CATCH_ALL_PATH)
            if route.get("timeout") is None:
                route["timeout"] = self.timeout

        return routes

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation
        """
        return {
            "host": self.host,
            "port": self.port,
            "to": self.to,
            "at": self.at,
            "timeout": self.timeout,
            "hooks_dir": self.hooks_dir,
            "log_level": self.log_level,
            "routes": self.routes,
        }
