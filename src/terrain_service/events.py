from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class TileProviderError:
    """A failed tile request, as handed to error listeners.

    Listeners set ``retry`` to ask for the request to be issued again.
    """

    message: str
    x: int
    y: int
    level: int
    times_retried: int = 0
    error: Optional[BaseException] = None
    retry: bool = False


TileProviderErrorListener = Callable[[TileProviderError], None]


class TileProviderErrorEvent:
    def __init__(self) -> None:
        self._listeners: list[TileProviderErrorListener] = []

    @property
    def number_of_listeners(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: TileProviderErrorListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: TileProviderErrorListener) -> bool:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def report(
        self,
        message: str,
        *,
        x: int,
        y: int,
        level: int,
        times_retried: int = 0,
        error: Optional[BaseException] = None,
    ) -> TileProviderError:
        record = TileProviderError(
            message=message,
            x=x,
            y=y,
            level=level,
            times_retried=times_retried,
            error=error,
        )
        if not self._listeners:
            logger.warning(
                "terrain_tile_failed",
                extra={
                    "x": x,
                    "y": y,
                    "level": level,
                    "times_retried": times_retried,
                    "error": message,
                },
            )
            return record

        for listener in list(self._listeners):
            listener(record)
        return record
