"""
Audio input device enumeration and selection.

Devices are identified by name; the catalog is rebuilt from the host audio
subsystem on every call.
"""

from dataclasses import dataclass
from typing import List, Optional

import sounddevice as sd

from ...utils.logger import get_logger
from ..errors import ConfigError, DeviceNotFound, NoDefaultDevice, NoDevicesFound

logger = get_logger(__name__)


@dataclass(frozen=True)
class AudioDevice:
    """Represents an audio input device."""

    id: str
    name: str
    is_default: bool
    index: int
    channels: int
    default_sample_rate: float


@dataclass(frozen=True)
class InputConfig:
    """Native default capture configuration of a device."""

    sample_rate: int
    channels: int


class DeviceCatalog:
    """Lists input devices and resolves the one to record from."""

    def list_devices(self) -> List[AudioDevice]:
        """
        List available audio input devices.

        Raises:
            NoDevicesFound: If the host reports no input-capable device.
            ConfigError: If the host audio subsystem cannot be queried.
        """
        try:
            host_devices = sd.query_devices()
        except sd.PortAudioError as e:
            raise ConfigError(str(e)) from e

        default_name = self._default_input_name()

        devices = []
        for i, device in enumerate(host_devices):
            if device["max_input_channels"] <= 0:
                continue
            name = device["name"]
            devices.append(
                AudioDevice(
                    id=name,
                    name=name,
                    is_default=name == default_name,
                    index=i,
                    channels=device["max_input_channels"],
                    default_sample_rate=device["default_samplerate"],
                )
            )

        if not devices:
            raise NoDevicesFound()

        return devices

    def resolve_device(self, device_id: Optional[str] = None) -> AudioDevice:
        """
        Get the device to record from.

        Args:
            device_id: Device name, or None for the system default input.

        Raises:
            DeviceNotFound: If no input device carries the requested name.
            NoDefaultDevice: If no id was given and the host has no default.
        """
        devices = self.list_devices()

        if device_id is not None:
            for device in devices:
                if device.id == device_id:
                    return device
            raise DeviceNotFound(device_id)

        for device in devices:
            if device.is_default:
                return device
        raise NoDefaultDevice()

    def default_input_config(self, device: AudioDevice) -> InputConfig:
        try:
            info = sd.query_devices(device.index, "input")
        except (sd.PortAudioError, ValueError) as e:
            raise ConfigError(str(e)) from e

        sample_rate = int(info["default_samplerate"])
        channels = int(info["max_input_channels"])
        if sample_rate <= 0 or channels <= 0:
            raise ConfigError(
                f"{device.name} reports {channels} channel(s) at {sample_rate} Hz"
            )
        return InputConfig(sample_rate=sample_rate, channels=channels)

    @staticmethod
    def _default_input_name() -> Optional[str]:
        try:
            return sd.query_devices(kind="input")["name"]
        except (sd.PortAudioError, ValueError) as e:
            logger.debug(f"No default input device: {e}")
            return None
