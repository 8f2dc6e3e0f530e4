"""Predicates for selecting a USBTMC device among the ones attached to the system.

Filters are combined with the '&' operator:

    DeviceIdFilter(DeviceId(0x0957, 0x5707)) & DeviceAddrFilter(DeviceAddr(1, 7))
"""

from typing import Optional, Union

from .usbtmc_types import DeviceAddr, DeviceId, DeviceInfo


class DeviceFilter:
    """Base class of device predicates."""

    def matches(self, device_info: DeviceInfo) -> bool:
        raise NotImplementedError

    def __and__(self, other: "DeviceFilter") -> "AllOf":
        return AllOf(self, other)


class AnyDevice(DeviceFilter):
    """Matches the first USBTMC device found."""

    def matches(self, device_info: DeviceInfo) -> bool:
        return True

    def __repr__(self):
        return "AnyDevice()"


class DeviceIdFilter(DeviceFilter):
    """Matches devices by vendor and product ID."""

    def __init__(self, device_id: DeviceId):
        self.device_id = device_id

    def matches(self, device_info: DeviceInfo) -> bool:
        return device_info.id == self.device_id

    def __repr__(self):
        return f"DeviceIdFilter({self.device_id})"


class DeviceAddrFilter(DeviceFilter):
    """Matches devices by bus number and device address."""

    def __init__(self, device_addr: DeviceAddr):
        self.device_addr = device_addr

    def matches(self, device_info: DeviceInfo) -> bool:
        return device_info.address == self.device_addr

    def __repr__(self):
        return f"DeviceAddrFilter({self.device_addr})"


class AllOf(DeviceFilter):
    """Matches devices that satisfy all of the given filters."""

    def __init__(self, *filters: DeviceFilter):
        self.filters = filters

    def matches(self, device_info: DeviceInfo) -> bool:
        return all(device_filter.matches(device_info) for device_filter in self.filters)

    def __repr__(self):
        return f"AllOf{self.filters!r}"


class DeviceInfoFilter(AllOf):
    """Matches the device with the given identifiers at the given address."""

    def __init__(self, device_info: DeviceInfo):
        super().__init__(DeviceIdFilter(device_info.id), DeviceAddrFilter(device_info.address))


def make_device_filter(selector: Optional[Union[DeviceFilter, DeviceId, DeviceAddr, DeviceInfo]]) -> DeviceFilter:
    """Turn a device selector into a DeviceFilter.

    None selects any device; DeviceId, DeviceAddr, and DeviceInfo values select devices with
    matching fields; a DeviceFilter is returned as-is.
    """
    match selector:
        case None:
            return AnyDevice()
        case DeviceFilter():
            return selector
        case DeviceInfo():
            return DeviceInfoFilter(selector)
        case DeviceId():
            return DeviceIdFilter(selector)
        case DeviceAddr():
            return DeviceAddrFilter(selector)
        case _:
            raise TypeError(f"Cannot select a device using {selector!r}.")
