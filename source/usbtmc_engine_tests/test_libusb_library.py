"""Tests for the result handling of the libusb wrapper, with the shared library replaced by a mock."""

import unittest
from unittest import mock

from usbtmc_engine.libusb_library import LIBUSB_ERROR_NOT_SUPPORTED, LibUsbLibrary, LibUsbLibraryFunctionCallError

LIBUSB_ERROR_NO_DEVICE = -4


class TestLibUsbLibrary(unittest.TestCase):

    def setUp(self):
        patches = [
            mock.patch("usbtmc_engine.libusb_library.sys.platform", "linux"),
            mock.patch("usbtmc_engine.libusb_library.ctypes.CDLL"),
        ]
        for patch in patches:
            patch.start()
            self.addCleanup(patch.stop)

        self.libusb = LibUsbLibrary("libusb-1.0.so.0")
        self.lib = self.libusb._lib
        self.lib.libusb_error_name.return_value = b"LIBUSB_ERROR_NO_DEVICE"

    def test_zero_result_is_success(self):
        self.lib.libusb_claim_interface.return_value = 0
        self.libusb.claim_interface("device-handle", 0)
        self.lib.libusb_claim_interface.assert_called_once_with("device-handle", 0)

    def test_negative_result_raises(self):
        self.lib.libusb_claim_interface.return_value = LIBUSB_ERROR_NO_DEVICE
        with self.assertRaises(LibUsbLibraryFunctionCallError) as context:
            self.libusb.claim_interface("device-handle", 0)
        self.assertEqual(context.exception.error_code, LIBUSB_ERROR_NO_DEVICE)
        self.assertEqual(str(context.exception), "LIBUSB_ERROR_NO_DEVICE (-4)")

    def test_kernel_driver_active(self):
        for (result, expected) in ((1, True), (0, False), (LIBUSB_ERROR_NOT_SUPPORTED, False)):
            with self.subTest(result=result):
                self.lib.libusb_kernel_driver_active.return_value = result
                self.assertEqual(self.libusb.kernel_driver_active("device-handle", 0), expected)

    def test_kernel_driver_active_error(self):
        self.lib.libusb_kernel_driver_active.return_value = LIBUSB_ERROR_NO_DEVICE
        with self.assertRaises(LibUsbLibraryFunctionCallError):
            self.libusb.kernel_driver_active("device-handle", 0)
