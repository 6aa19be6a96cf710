from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any, Final

from ..models import (
    CONNECTION_TYPE_NETWORK,
    CONNECTION_TYPE_SERIAL,
    ConnectionDescriptor,
    FiscalRecord,
    NetworkConnection,
    SerialConnection,
)
from .base import DriverError, DriverNotConnected, DriverResultError, FiscalDriver
from .license import decode_license

logger = logging.getLogger(__name__)

_PROG_ID: Final[str] = "AddIn.DrvFR"

# (table, row, field) coordinates inside the device tables.
_TABLE_SERIAL_NUMBER: Final[tuple[int, int, int]] = (18, 1, 1)
_TABLE_ORGANIZATION: Final[tuple[int, int, int]] = (18, 1, 7)
_TABLE_ADDRESS: Final[tuple[int, int, int]] = (18, 1, 9)
_TABLE_OFD_NAME: Final[tuple[int, int, int]] = (18, 1, 10)
_TABLE_FFD_VERSION: Final[tuple[int, int, int]] = (17, 1, 17)

_FFD_VERSIONS: Final[dict[int, str]] = {2: "105", 4: "120"}

_WORK_MODE_MARKED_BIT: Final[int] = 0x10
_WORK_MODE_EX_EXCISE_BIT: Final[int] = 0x01


def _as_int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError as exc:
            raise DriverError(f"Cannot convert {value!r} to int") from exc
    raise DriverError(f"Unexpected property type {type(value).__name__}")


def _as_datetime(value: Any) -> datetime | None:
    # pywintypes.datetime is a datetime subclass; the OLE zero date is 1899-12-30.
    if isinstance(value, datetime):
        if value.year <= 1899:
            return None
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time())
    return None


def _as_date(value: Any) -> date | None:
    moment = _as_datetime(value)
    return moment.date() if moment is not None else None


def _ffd_version_label(raw: str | None) -> str:
    if raw is None:
        return "не определена"
    try:
        code = int(raw.strip())
    except ValueError:
        code = 0
    return _FFD_VERSIONS.get(code, f"неизвестный код ({code})")


class DrvFrDriver(FiscalDriver):
    """Session against the Shtrih-M `AddIn.DrvFR` COM automation object.

    COM is initialised in apartment-threaded mode on the thread that calls
    `connect()`; the same thread must call `fetch_fiscal_record()` and
    `disconnect()`.
    """

    def __init__(self, descriptor: ConnectionDescriptor, *, timeout_ms: int | None = None) -> None:
        self._descriptor = descriptor
        self._timeout_ms = timeout_ms
        self._dispatch: Any = None
        self._com_initialized = False
        self._connected = False

    @property
    def descriptor(self) -> ConnectionDescriptor:
        return self._descriptor

    def connect(self) -> None:
        if self._connected:
            return
        try:
            import pythoncom
            import win32com.client
        except ImportError as exc:
            raise DriverError("The DrvFR driver requires pywin32 on Windows") from exc

        try:
            pythoncom.CoInitializeEx(pythoncom.COINIT_APARTMENTTHREADED)
        except pythoncom.com_error as exc:
            logger.debug("CoInitializeEx failed (%s), falling back to CoInitialize", exc)
            try:
                pythoncom.CoInitialize()
            except pythoncom.com_error as fallback_exc:
                raise DriverError(f"COM init failed: {fallback_exc}") from fallback_exc
        self._com_initialized = True

        try:
            self._dispatch = win32com.client.Dispatch(_PROG_ID)
            self._configure()
            self._dispatch.Connect()
        except pythoncom.com_error as exc:
            self._release()
            raise DriverError(f"Connect call failed: {exc}") from exc

        try:
            self._check_result()
        except DriverError:
            self._release()
            raise

        self._connected = True
        logger.info("Connected to KKT at %s", self._descriptor.describe())

    def disconnect(self) -> None:
        if not self._connected:
            self._release()
            return
        self._connected = False
        try:
            self._dispatch.Disconnect()
        except Exception as exc:  # noqa: BLE001 - disconnect must never raise
            logger.warning("Disconnect from %s failed: %s", self._descriptor.describe(), exc)
        self._release()
        logger.info("Disconnected from KKT at %s", self._descriptor.describe())

    def fetch_fiscal_record(self) -> FiscalRecord:
        if not self._connected:
            raise DriverNotConnected("Driver is not connected")

        record = FiscalRecord()
        try:
            self._read_base_info(record)
            self._read_fiscalization(record)
            self._read_fn_info(record)
            self._read_tables(record)
        except DriverError:
            raise
        except Exception as exc:  # noqa: BLE001 - COM errors surface as arbitrary types
            raise DriverError(f"Fiscal record collection failed: {exc}") from exc
        return record

    def _configure(self) -> None:
        d = self._dispatch
        descriptor = self._descriptor
        d.Password = descriptor.password
        if isinstance(descriptor, SerialConnection):
            d.ConnectionType = CONNECTION_TYPE_SERIAL
            d.ComNumber = descriptor.com_number
            d.BaudRate = descriptor.baud_index
        elif isinstance(descriptor, NetworkConnection):
            d.ConnectionType = CONNECTION_TYPE_NETWORK
            d.IPAddress = descriptor.ip_address
            d.TCPPort = descriptor.tcp_port
            d.UseIPAddress = True
        if self._timeout_ms is not None:
            d.Timeout = self._timeout_ms

    def _release(self) -> None:
        self._dispatch = None
        if self._com_initialized:
            self._com_initialized = False
            import pythoncom

            pythoncom.CoUninitialize()

    def _check_result(self) -> None:
        try:
            code = _as_int(self._dispatch.ResultCode)
        except DriverError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise DriverError(f"Cannot read ResultCode: {exc}") from exc
        if code != 0:
            description = str(getattr(self._dispatch, "ResultCodeDescription", "") or "")
            raise DriverResultError(code, description)

    def _call(self, method: str) -> None:
        getattr(self._dispatch, method)()
        self._check_result()

    def _read_table_field(self, coords: tuple[int, int, int]) -> str | None:
        table, row, fld = coords
        d = self._dispatch
        d.TableNumber = table
        d.RowNumber = row
        d.FieldNumber = fld
        try:
            self._call("ReadTable")
        except DriverError as exc:
            logger.debug("ReadTable %d/%d/%d failed: %s", table, row, fld, exc)
            return None
        return str(d.ValueOfFieldString or "")

    def _read_base_info(self, record: FiscalRecord) -> None:
        d = self._dispatch
        version = [
            _as_int(getattr(d, name, 0))
            for name in ("DriverMajorVersion", "DriverMinorVersion", "DriverRelease", "DriverBuild")
        ]
        record.installed_driver = ".".join(str(part) for part in version)

        self._call("GetDeviceMetrics")
        record.model_name = str(d.UDescription or "").strip()

        self._call("GetECRStatus")
        soft_date = _as_date(d.ECRSoftDate)
        if soft_date is not None:
            record.software_date = soft_date.strftime("%Y-%m-%d")

        try:
            self._call("ReadFeatureLicenses")
        except DriverError as exc:
            logger.warning("ReadFeatureLicenses failed, license info unavailable: %s", exc)
            return
        hex_license = str(d.License or "")
        record.licenses = decode_license(hex_license)
        if record.licenses:
            logger.info("Decoded license: %s", record.licenses)
        elif hex_license:
            logger.info("Unrecognised license format: %s", hex_license)

    def _read_fiscalization(self, record: FiscalRecord) -> None:
        d = self._dispatch
        d.RegistrationNumber = 1
        self._call("FNGetFiscalizationResult")

        record.registration_number = str(d.KKTRegistrationNumber or "").strip()
        record.inn = str(d.INN or "").strip()

        reg_date = _as_date(d.Date)
        if reg_date is not None:
            reg_time = time()
            time_text = str(d.Time or "").strip()
            if time_text:
                try:
                    reg_time = datetime.strptime(time_text, "%H:%M:%S").time()
                except ValueError:
                    logger.debug("Unparseable registration time %r", time_text)
            record.registration_date = datetime.combine(reg_date, reg_time).strftime(
                "%Y-%m-%d %H:%M:%S"
            )

        work_mode = _as_int(d.WorkMode)
        work_mode_ex = _as_int(d.WorkModeEx)
        record.attribute_marked = bool(work_mode & _WORK_MODE_MARKED_BIT)
        record.attribute_excise = bool(work_mode_ex & _WORK_MODE_EX_EXCISE_BIT)

    def _read_fn_info(self, record: FiscalRecord) -> None:
        d = self._dispatch
        self._call("FNGetSerial")
        record.fn_serial = str(d.SerialNumber or "").strip()

        self._call("FNGetExpirationTime")
        end_date = _as_datetime(d.Date)
        if end_date is not None:
            record.fn_end_date = end_date.strftime("%Y-%m-%d %H:%M:%S")

        self._call("FNGetImplementation")
        record.fn_execution = str(d.FNImplementation or "").strip()

    def _read_tables(self, record: FiscalRecord) -> None:
        serial = self._read_table_field(_TABLE_SERIAL_NUMBER)
        if serial is not None:
            record.serial_number = serial.strip()
        org = self._read_table_field(_TABLE_ORGANIZATION)
        if org is not None:
            record.organization_name = org.strip()
        ofd = self._read_table_field(_TABLE_OFD_NAME)
        if ofd is not None:
            record.ofd_name = ofd.strip()
        address = self._read_table_field(_TABLE_ADDRESS)
        if address is not None:
            record.address = address.strip()
        record.ffd_version = _ffd_version_label(self._read_table_field(_TABLE_FFD_VERSION))


def drvfr_factory(
    descriptor: ConnectionDescriptor,
    *,
    timeout_ms: int | None = None,
) -> FiscalDriver:
    return DrvFrDriver(descriptor, timeout_ms=timeout_ms)
