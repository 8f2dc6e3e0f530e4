"""Tests for device selection."""

import unittest

from usbtmc_engine.device_filter import (AllOf, AnyDevice, DeviceAddrFilter, DeviceIdFilter, DeviceInfoFilter,
                                         make_device_filter)
from usbtmc_engine.usbtmc_types import DeviceAddr, DeviceId, DeviceInfo

SCOPE = DeviceInfo(DeviceId(0x0957, 0x1796), DeviceAddr(1, 7))
METER = DeviceInfo(DeviceId(0x05e6, 0x6500), DeviceAddr(2, 3))


class TestDeviceFilters(unittest.TestCase):

    def test_any_device(self):
        self.assertTrue(AnyDevice().matches(SCOPE))
        self.assertTrue(AnyDevice().matches(METER))

    def test_device_id(self):
        device_filter = DeviceIdFilter(DeviceId(0x0957, 0x1796))
        self.assertTrue(device_filter.matches(SCOPE))
        self.assertFalse(device_filter.matches(METER))

    def test_device_addr(self):
        device_filter = DeviceAddrFilter(DeviceAddr(2, 3))
        self.assertFalse(device_filter.matches(SCOPE))
        self.assertTrue(device_filter.matches(METER))

    def test_combined(self):
        device_filter = DeviceIdFilter(SCOPE.id) & DeviceAddrFilter(DeviceAddr(1, 8))
        self.assertIsInstance(device_filter, AllOf)
        self.assertFalse(device_filter.matches(SCOPE))

    def test_device_info(self):
        device_filter = DeviceInfoFilter(SCOPE)
        self.assertTrue(device_filter.matches(SCOPE))
        self.assertFalse(device_filter.matches(SCOPE._replace(address=DeviceAddr(1, 8))))


class TestMakeDeviceFilter(unittest.TestCase):

    def test_none_selects_any_device(self):
        self.assertIsInstance(make_device_filter(None), AnyDevice)

    def test_filter_passes_through(self):
        device_filter = DeviceIdFilter(SCOPE.id)
        self.assertIs(make_device_filter(device_filter), device_filter)

    def test_plain_values(self):
        self.assertIsInstance(make_device_filter(SCOPE.id), DeviceIdFilter)
        self.assertIsInstance(make_device_filter(SCOPE.address), DeviceAddrFilter)
        self.assertIsInstance(make_device_filter(SCOPE), DeviceInfoFilter)
        self.assertTrue(make_device_filter(METER).matches(METER))
        self.assertFalse(make_device_filter(METER).matches(SCOPE))

    def test_bad_selector(self):
        with self.assertRaises(TypeError):
            make_device_filter("0957:1796")


class TestDeviceTypes(unittest.TestCase):

    def test_str(self):
        self.assertEqual(str(SCOPE.id), "0957:1796")
        self.assertEqual(str(SCOPE.address), "001/007")
