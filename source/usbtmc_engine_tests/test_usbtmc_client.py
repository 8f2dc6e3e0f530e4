"""Tests for the UsbTmcClient facade, with device discovery and libusb replaced by mocks."""

import unittest
from unittest import mock

from fake_device import BULK_IN, BULK_OUT, INTERRUPT_IN, FakeTransport, bulk_in_transfer, transport_timeout
from usbtmc_engine import UsbTmcClient, UsbTmcClientOptions
from usbtmc_engine.constants import ControlStatus
from usbtmc_engine.errors import (InterfaceClosedError, ResponseDecodingError, StatusFailureError, TeardownError,
                                  UsbTmcGenericError)
from usbtmc_engine.libusb_library import LibUsbLibraryFunctionCallError
from usbtmc_engine.usbtmc_types import Capabilities, DeviceMode, UsbTmcEndpoints

ENDPOINTS = UsbTmcEndpoints(BULK_OUT, BULK_IN, INTERRUPT_IN)

LIBUSB_ERROR_NO_DEVICE = -4

CAPABILITIES = bytes([ControlStatus.SUCCESS, 0x00, 0x00, 0x01, 0b100, 0b1]) + bytes(18)
CLEAR_SEQUENCE = [bytes([ControlStatus.SUCCESS]), bytes([ControlStatus.SUCCESS, 0x00])]


class UsbTmcClientTestCase(unittest.TestCase):

    def make_client(self, control_responses=None, has_kernel_driver=False, options=None):
        if control_responses is None:
            control_responses = [CAPABILITIES] + CLEAR_SEQUENCE

        self.transport = FakeTransport(control_responses=control_responses)
        self.libusb = mock.MagicMock()

        manager = mock.Mock()
        manager.get_libusb.return_value = self.libusb

        def detach_kernel_driver(_libusb, _device_handle, mode):
            return mode._replace(has_kernel_driver=has_kernel_driver)

        patches = [
            mock.patch.object(UsbTmcClient, "_usbtmc_libusb_manager", manager),
            mock.patch("usbtmc_engine.usbtmc_client.find_and_open_device", return_value="device-handle"),
            mock.patch("usbtmc_engine.usbtmc_client.get_usbtmc_mode", return_value=DeviceMode(1, 0, 0)),
            mock.patch("usbtmc_engine.usbtmc_client.detach_kernel_driver", side_effect=detach_kernel_driver),
            mock.patch("usbtmc_engine.usbtmc_client.get_endpoints", return_value=ENDPOINTS),
            mock.patch("usbtmc_engine.usbtmc_client.LibUsbTransport", return_value=self.transport),
        ]
        for patch in patches:
            patch.start()
            self.addCleanup(patch.stop)

        return UsbTmcClient(options=options)

    def open_client(self, **kwargs):
        client = self.make_client(**kwargs)
        client.open()
        self.addCleanup(client.close)
        return client

    def teardown_calls(self):
        return [name for (name, _args, _kwargs) in self.libusb.method_calls
                if name in ("release_interface", "attach_kernel_driver", "close")]


class TestOpen(UsbTmcClientTestCase):

    def test_open_sequence(self):
        client = self.open_client()

        self.assertTrue(client.is_open)
        self.assertEqual(client.mode, DeviceMode(1, 0, 0))
        self.assertEqual(client.endpoints, ENDPOINTS)
        self.assertEqual(client.capabilities, Capabilities(0x0100, True, False, False, True))

        self.libusb.set_configuration.assert_called_once_with("device-handle", 1)
        self.libusb.claim_interface.assert_called_once_with("device-handle", 0)
        self.libusb.set_interface_alt_setting.assert_called_once_with("device-handle", 0, 0)

        # GET_CAPABILITIES, INITIATE_CLEAR, CHECK_CLEAR_STATUS; then both bulk endpoint halts are cleared.
        self.assertEqual([call.request for call in self.transport.control_calls], [7, 5, 6])
        self.assertEqual(self.transport.halts_cleared, [0x02, 0x81])

    def test_no_clear_at_connect(self):
        self.open_client(control_responses=[CAPABILITIES], options=UsbTmcClientOptions(clear_at_connect=False))
        self.assertEqual([call.request for call in self.transport.control_calls], [7])
        self.assertEqual(self.transport.halts_cleared, [])

    def test_failed_open_closes_device(self):
        client = self.make_client(control_responses=[bytes([ControlStatus.FAILED])], has_kernel_driver=True)

        with self.assertRaises(StatusFailureError):
            client.open()

        self.assertFalse(client.is_open)
        self.assertEqual(self.teardown_calls(), ["release_interface", "attach_kernel_driver", "close"])

    def test_open_twice(self):
        client = self.open_client()
        with self.assertRaises(UsbTmcGenericError):
            client.open()

    def test_context_manager(self):
        client = self.make_client()
        with client as entered:
            self.assertIs(entered, client)
            self.assertTrue(client.is_open)
        self.assertFalse(client.is_open)
        self.libusb.close.assert_called_once_with("device-handle")


class TestClose(UsbTmcClientTestCase):

    def test_teardown_order(self):
        client = self.open_client(has_kernel_driver=True)
        client.close()

        self.assertEqual(self.teardown_calls(), ["release_interface", "attach_kernel_driver", "close"])
        self.libusb.release_interface.assert_called_once_with("device-handle", 0)
        self.libusb.attach_kernel_driver.assert_called_once_with("device-handle", 0)

    def test_no_kernel_driver_to_reattach(self):
        client = self.open_client(has_kernel_driver=False)
        client.close()
        self.assertEqual(self.teardown_calls(), ["release_interface", "close"])

    def test_teardown_runs_once(self):
        client = self.open_client(has_kernel_driver=True)
        client.close()
        client.close()
        self.assertEqual(self.teardown_calls(), ["release_interface", "attach_kernel_driver", "close"])

    def test_teardown_failure_is_fatal(self):
        client = self.open_client(has_kernel_driver=True)
        self.libusb.release_interface.side_effect = LibUsbLibraryFunctionCallError(LIBUSB_ERROR_NO_DEVICE,
                                                                                   "LIBUSB_ERROR_NO_DEVICE")

        with self.assertLogs("usbtmc_engine.usbtmc_client", level="CRITICAL"):
            with self.assertRaises(TeardownError):
                client.close()

        self.assertFalse(client.is_open)
        self.libusb.attach_kernel_driver.assert_not_called()
        self.libusb.close.assert_called_once_with("device-handle")

        client.close()
        self.libusb.close.assert_called_once_with("device-handle")

    def test_closed_client_refuses_io(self):
        client = self.open_client()
        client.close()

        with self.assertRaises(InterfaceClosedError):
            client.command("*RST")
        with self.assertRaises(InterfaceClosedError):
            client.query("*IDN?")
        with self.assertRaises(InterfaceClosedError):
            client.read_status_byte()
        with self.assertRaises(InterfaceClosedError):
            client.clear()


class TestMessages(UsbTmcClientTestCase):

    def test_command(self):
        client = self.open_client()
        client.command("*RST")

        [call] = self.transport.bulk_out_calls
        self.assertEqual(call.endpoint, 0x02)
        self.assertEqual(call.data, bytes([1, 1, 0xfe, 0, 4, 0, 0, 0, 1, 0, 0, 0]) + b"*RST")

    def test_query(self):
        client = self.open_client()
        self.transport.bulk_in_responses.append(bulk_in_transfer(b"ACME,M1,1234,1.0\n", True, btag=2))

        self.assertEqual(client.query("*IDN?"), "ACME,M1,1234,1.0")

        (command, request) = self.transport.bulk_out_calls
        self.assertEqual(command.data[:2], bytes([1, 1]))
        self.assertEqual(request.data[:2], bytes([2, 2]))
        # The device supports a termination character, so the default '\n' is requested.
        self.assertEqual(request.data[8:10], bytes([0x02, 0x0a]))

    def test_query_with_custom_term_char(self):
        client = self.open_client(options=UsbTmcClientOptions(term_char=0x0d))
        self.transport.bulk_in_responses.append(bulk_in_transfer(b"1\r", True, btag=2))

        self.assertEqual(client.query(b"*OPC?"), "1")
        self.assertEqual(self.transport.bulk_out_calls[1].data[9], 0x0d)

    def test_query_raw(self):
        client = self.open_client()
        self.transport.bulk_in_responses.append(bulk_in_transfer(b"#14\x00\x01\x02\x03", False, btag=2))
        self.transport.bulk_in_responses.append(bulk_in_transfer(b"\n", True, btag=2))

        self.assertEqual(client.query_raw("CURV?"), b"#14\x00\x01\x02\x03\n")

    def test_query_decoding_error(self):
        client = self.open_client()
        self.transport.bulk_in_responses.append(bulk_in_transfer(b"\xff\xfe\n", True, btag=2))

        with self.assertRaises(ResponseDecodingError):
            client.query("*IDN?")

    def test_set_timeout(self):
        client = self.open_client(options=UsbTmcClientOptions(timeout=1.0))
        self.assertEqual(client.timeout, 1.0)

        client.command("A")
        client.set_timeout(0.25)
        client.command("B")

        (first, second) = self.transport.bulk_out_calls
        self.assertEqual(first.timeout, 1000)
        self.assertEqual(second.timeout, 250)

        with self.assertRaises(ValueError):
            client.set_timeout(-1)


class TestControlRequests(UsbTmcClientTestCase):

    def test_read_status_byte(self):
        client = self.open_client()
        self.transport.control_responses.append(bytes([ControlStatus.SUCCESS, 0x01, 0x50]))
        self.assertEqual(client.read_status_byte(), 0x50)
        self.assertEqual(self.transport.control_calls[-1].request, 128)

    def test_indicator_pulse(self):
        client = self.open_client()
        self.transport.control_responses.append(bytes([ControlStatus.SUCCESS]))
        client.indicator_pulse()
        self.assertEqual(self.transport.control_calls[-1].request, 64)

    def test_command_returns_btags(self):
        client = self.open_client()
        self.assertIsNone(client.last_bulk_out_btag)

        self.assertEqual(client.command("*CLS"), [1])
        self.assertEqual(client.command(b"x" * 8193), [2, 3])
        self.assertEqual(client.last_bulk_out_btag, 3)

    def test_abort_failed_command(self):
        client = self.open_client()
        client.command("*CLS")
        self.transport.fail_bulk_out_at = 1
        with self.assertRaises(LibUsbLibraryFunctionCallError):
            client.command("*RST")

        failed_btag = client.last_bulk_out_btag
        self.assertEqual(failed_btag, 2)

        self.transport.control_responses.extend([
            bytes([ControlStatus.SUCCESS, failed_btag]),
            bytes([ControlStatus.SUCCESS, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00]),
        ])
        self.assertEqual(client.abort_bulk_out(failed_btag), 0)

        (initiate, _check) = self.transport.control_calls[-2:]
        self.assertEqual((initiate.request, initiate.value, initiate.index), (1, failed_btag, 0x02))

    def test_abort_bulk_out_defaults_to_last_transaction(self):
        client = self.open_client()
        client.command("*RST")
        self.transport.control_responses.extend([
            bytes([ControlStatus.SUCCESS, 0x01]),
            bytes([ControlStatus.SUCCESS, 0x00, 0x00, 0x00, 0x04, 0x00, 0x00, 0x00]),
        ])
        self.assertEqual(client.abort_bulk_out(), 4)
        self.assertEqual(self.transport.control_calls[-2].value, client.last_bulk_out_btag)

    def test_abort_failed_query(self):
        client = self.open_client()
        self.transport.bulk_in_responses.extend([bulk_in_transfer(b"#18", False, btag=2), transport_timeout()])
        with self.assertRaises(LibUsbLibraryFunctionCallError):
            client.query_raw("CURV?")

        self.assertEqual(client.last_bulk_out_btag, 1)
        self.assertEqual(client.last_bulk_in_btag, 2)

        self.transport.control_responses.extend([
            bytes([ControlStatus.SUCCESS, 0x02]),
            bytes([ControlStatus.SUCCESS, 0x00, 0x00, 0x00, 0x10, 0x00, 0x00, 0x00]),
        ])
        self.assertEqual(client.abort_bulk_in(), 16)

        (initiate, check) = self.transport.control_calls[-2:]
        self.assertEqual((initiate.request, initiate.value, initiate.index), (3, client.last_bulk_in_btag, 0x81))
        self.assertEqual((check.request, check.index), (4, 0x81))

    def test_nothing_to_abort(self):
        client = self.open_client()
        with self.assertRaises(UsbTmcGenericError):
            client.abort_bulk_out()
        with self.assertRaises(UsbTmcGenericError):
            client.abort_bulk_in()
        self.assertEqual([call.request for call in self.transport.control_calls], [7, 5, 6])

    def test_closed_client_has_no_btags(self):
        client = self.open_client()
        client.command("*RST")
        client.close()
        self.assertIsNone(client.last_bulk_out_btag)
        self.assertIsNone(client.last_bulk_in_btag)
