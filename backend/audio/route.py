"""
Audio route negotiation.

Responsibilities:
- Describe the Primary and Fallback route configurations
- Claim the process-wide route and validate a configuration against the device
- Report the format the device ACTUALLY activated (never an assumed one)
- Release the claim and notify other route consumers
- Surface external interruption (another consumer preempting the route)

Non-responsibilities:
- No retries beyond one Fallback attempt
- No stream creation (AudioStreamSource)
- No session state
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable

import sounddevice as sd

from audio.arbiter import RouteArbiter, RouteBusyError, get_arbiter
from audio.errors import RouteActivationError
from audio.formats import ActiveFormat, RouteConfig, RouteMode
from capture.errors import RouteUnavailable
from constants import (
    CAPTURE_BLOCKSIZE_FRAMES,
    CAPTURE_DTYPE,
    FALLBACK_CHANNELS,
    FALLBACK_LATENCY,
    PRIMARY_CHANNELS,
    PRIMARY_LATENCY,
    PRIMARY_SAMPLE_RATE_HZ,
    ROUTE_DEACTIVATE_SETTLE_MS,
    ROUTE_FALLBACK_SETTLE_MS,
    ROUTE_POST_ACTIVATE_SETTLE_MS,
    ROUTE_PRE_ACTIVATE_SETTLE_MS,
)
from observability.logger import log_event


CAPTURE_ROUTE_OWNER = "capture"

InterruptionHandler = Callable[[str], None]


@dataclass(frozen=True)
class SettleDelays:
    """Stabilization waits between route steps, in milliseconds."""
    deactivate_ms: int = ROUTE_DEACTIVATE_SETTLE_MS
    pre_activate_ms: int = ROUTE_PRE_ACTIVATE_SETTLE_MS
    post_activate_ms: int = ROUTE_POST_ACTIVATE_SETTLE_MS
    fallback_ms: int = ROUTE_FALLBACK_SETTLE_MS

    @classmethod
    def none(cls) -> SettleDelays:
        return cls(0, 0, 0, 0)


class AudioRouteNegotiator:
    """
    Owns the capture claim on the shared audio route for one session.

    Primary claims politely and fails when the route is busy; Fallback
    preempts the current holder (e.g. speech playback) and accepts the
    device default rate on the default device.
    """

    def __init__(
        self,
        *,
        device: int | str | None = None,
        arbiter: RouteArbiter | None = None,
        settle: SettleDelays | None = None,
    ) -> None:
        self._device = device
        self._arbiter = arbiter or get_arbiter()
        self._settle = settle or SettleDelays()
        self._active: ActiveFormat | None = None
        self._on_interrupted: InterruptionHandler | None = None

    # ------------------------------------------------------------------
    # Configurations
    # ------------------------------------------------------------------

    def primary_config(self) -> RouteConfig:
        return RouteConfig(
            mode=RouteMode.PRIMARY,
            sample_rate=PRIMARY_SAMPLE_RATE_HZ,
            channels=PRIMARY_CHANNELS,
            device=self._device,
            latency=PRIMARY_LATENCY,
            blocksize=CAPTURE_BLOCKSIZE_FRAMES,
        )

    def fallback_config(self) -> RouteConfig:
        return RouteConfig(
            mode=RouteMode.FALLBACK,
            sample_rate=None,
            channels=FALLBACK_CHANNELS,
            device=None,
            latency=FALLBACK_LATENCY,
            blocksize=CAPTURE_BLOCKSIZE_FRAMES,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def active(self) -> ActiveFormat | None:
        """Currently activated format, or None when no claim is held."""
        return self._active

    def set_interruption_handler(self, handler: InterruptionHandler | None) -> None:
        """
        Register the callback invoked when another consumer takes the route.

        The handler may run on any thread.
        """
        self._on_interrupted = handler

    async def activate(self, config: RouteConfig) -> ActiveFormat:
        """
        Claim the route with config and return the activated format.

        Raises:
            RouteActivationError if the claim or the device rejects config.
            No claim is left behind on failure.
        """
        if self._active is not None:
            # Never layer a new activation over a previous one
            self.deactivate()
            await _sleep_ms(self._settle.deactivate_ms)

        await _sleep_ms(
            self._settle.fallback_ms
            if config.mode is RouteMode.FALLBACK
            else self._settle.pre_activate_ms
        )

        try:
            self._arbiter.claim(
                CAPTURE_ROUTE_OWNER,
                on_preempt=self._handle_preempt,
                preempt=config.mode is RouteMode.FALLBACK,
            )
        except RouteBusyError as exc:
            raise RouteActivationError(config.mode, f"route_busy:{exc.holder}") from exc

        try:
            fmt = await asyncio.to_thread(_query_device, config)
            await _sleep_ms(self._settle.post_activate_ms)
            if self._arbiter.holder != CAPTURE_ROUTE_OWNER:
                raise RouteActivationError(config.mode, "claim_lost_during_settle")
        except BaseException:
            # Includes cancellation during the settle wait
            self._arbiter.release(CAPTURE_ROUTE_OWNER)
            raise

        self._active = fmt
        log_event({
            "event_type": "ROUTE_ACTIVATED",
            "requested_sample_rate": config.sample_rate,
            **fmt.describe(),
        })
        return fmt

    async def negotiate(self) -> ActiveFormat:
        """
        Activate Primary, then exactly one Fallback attempt.

        Raises:
            RouteUnavailable if both configurations are rejected.
        """
        try:
            return await self.activate(self.primary_config())
        except RouteActivationError as primary_exc:
            log_event({
                "event_type": "ROUTE_FALLBACK",
                "reason": primary_exc.reason,
            }, level="WARNING")

        try:
            return await self.activate(self.fallback_config())
        except RouteActivationError as fallback_exc:
            raise RouteUnavailable(fallback_exc.reason) from fallback_exc

    def deactivate(self) -> None:
        """
        Release the capture claim and notify other route consumers.

        Idempotent. Safe when nothing is active.
        """
        was_active = self._active
        self._active = None
        released = self._arbiter.release(CAPTURE_ROUTE_OWNER)
        if released or was_active is not None:
            log_event({
                "event_type": "ROUTE_DEACTIVATED",
                "route_mode": was_active.mode.value if was_active else None,
            })

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _handle_preempt(self, new_owner: str) -> None:
        was_active = self._active
        self._active = None
        if was_active is None:
            # Still settling; activate() reports the lost claim itself
            return
        handler = self._on_interrupted
        if handler is not None:
            handler(f"preempted_by:{new_owner}")


def _query_device(config: RouteConfig) -> ActiveFormat:
    """
    Validate config against the device and read back the actual format.

    Blocking PortAudio calls; run off the event loop.
    """
    try:
        info: Any = sd.query_devices(config.device, kind="input")
    except (ValueError, sd.PortAudioError) as exc:
        raise RouteActivationError(config.mode, f"device_unavailable: {exc}") from exc

    max_channels = int(info["max_input_channels"])
    if max_channels < 1:
        raise RouteActivationError(config.mode, "device_has_no_input_channels")

    sample_rate = (
        config.sample_rate
        if config.sample_rate is not None
        else int(info["default_samplerate"])
    )
    channels = min(config.channels, max_channels)
    device_index = int(info["index"]) if "index" in info else None

    try:
        sd.check_input_settings(
            device=device_index,
            channels=channels,
            dtype=CAPTURE_DTYPE,
            samplerate=sample_rate,
        )
    except (ValueError, sd.PortAudioError) as exc:
        raise RouteActivationError(config.mode, f"unsupported_format: {exc}") from exc

    return ActiveFormat(
        mode=config.mode,
        sample_rate=sample_rate,
        channels=channels,
        device=device_index,
        blocksize=config.blocksize,
        latency=config.latency,
    )


async def _sleep_ms(ms: int) -> None:
    if ms > 0:
        await asyncio.sleep(ms / 1000.0)
