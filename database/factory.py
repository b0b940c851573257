"""Driver registration and selection."""

from __future__ import annotations

import inspect
from typing import List, Optional

from core.exceptions import DriverNotFoundError
from core.logger import get_logger
from database.connection import Driver

logger = get_logger(__name__)


class DriverRegistry:
    """Ordered set of drivers; the first supported one wins."""

    def __init__(self, drivers: Optional[List[Driver]] = None) -> None:
        self._drivers: List[Driver] = []
        for driver in drivers or ():
            self.register(driver)

    def register(self, driver: Driver) -> None:
        if driver in self._drivers:
            return
        self._drivers.append(driver)
        logger.debug("Registered driver %s", _driver_name(driver))

    def unregister(self, driver: Driver) -> None:
        if driver in self._drivers:
            self._drivers.remove(driver)

    @property
    def drivers(self) -> List[Driver]:
        return list(self._drivers)

    async def select(self) -> Driver:
        """Return the first registered driver supported by this host."""
        for driver in self._drivers:
            try:
                supported = driver.is_supported()
                if inspect.isawaitable(supported):
                    supported = await supported
            except Exception as exc:
                logger.warning("Driver %s support probe failed: %s", _driver_name(driver), exc)
                continue
            if supported:
                return driver
        raise DriverNotFoundError(
            f"No supported SQLite driver found among {len(self._drivers)} registered"
        )


def _driver_name(driver: Driver) -> str:
    return getattr(driver, "name", type(driver).__name__)
