from abc import ABC, abstractmethod

from models.errors import LogTargetRegistrationError, MessageActionError
from models.rules import LogTarget, Severity

EVENTLOG_KEY = r"SYSTEM\CurrentControlSet\Services\EventLog"
# Same message file New-EventLog registers, so entries render the inserted string as-is
MESSAGE_FILE = r"%SystemRoot%\Microsoft.NET\Framework64\v4.0.30319\EventLogMessages.dll"
TYPES_SUPPORTED = 7


class EventLogSink(ABC):
    """Destination for event records produced by matched rules."""

    @abstractmethod
    def register_source(self, target: LogTarget) -> bool:
        """Registers target.source under target.log_name on target.host.

        Returns True when the source was created and False when it already
        existed. Raises LogTargetRegistrationError on any other failure.
        """

    @abstractmethod
    def write(self, target: LogTarget, event_id: int, severity: Severity, message: str):
        """Writes one record. Raises MessageActionError on failure."""


class WindowsEventLog(EventLogSink):
    """Writes to the Windows event log of the local or a remote host via pywin32."""

    def __init__(self):
        import pywintypes
        import win32evtlog
        import winreg
        self._evtlog = win32evtlog
        self._winreg = winreg
        self._error = pywintypes.error

    def _event_type(self, severity: Severity) -> int:
        return {
            Severity.INFORMATION: self._evtlog.EVENTLOG_INFORMATION_TYPE,
            Severity.WARNING: self._evtlog.EVENTLOG_WARNING_TYPE,
            Severity.ERROR: self._evtlog.EVENTLOG_ERROR_TYPE,
            Severity.SUCCESS_AUDIT: self._evtlog.EVENTLOG_AUDIT_SUCCESS,
            Severity.FAILURE_AUDIT: self._evtlog.EVENTLOG_AUDIT_FAILURE,
        }[severity]

    def register_source(self, target: LogTarget) -> bool:
        winreg = self._winreg
        key_path = f"{EVENTLOG_KEY}\\{target.log_name}\\{target.source}"
        computer = None if target.is_local else target.host
        try:
            hklm = winreg.ConnectRegistry(computer, winreg.HKEY_LOCAL_MACHINE)
        except OSError as e:
            raise LogTargetRegistrationError(f"Cannot open the registry on '{target.host}': {e}") from e

        try:
            try:
                winreg.CloseKey(winreg.OpenKey(hklm, key_path))
                return False
            except FileNotFoundError:
                pass
            # CreateKeyEx also creates the log key when the log itself is new
            key = winreg.CreateKeyEx(hklm, key_path, 0, winreg.KEY_WRITE)
            try:
                winreg.SetValueEx(key, 'EventMessageFile', 0, winreg.REG_EXPAND_SZ, MESSAGE_FILE)
                winreg.SetValueEx(key, 'TypesSupported', 0, winreg.REG_DWORD, TYPES_SUPPORTED)
            finally:
                winreg.CloseKey(key)
            print(f"Registered event source {target}")
            return True
        except OSError as e:
            raise LogTargetRegistrationError(f"Failed to register event source {target}: {e}") from e
        finally:
            winreg.CloseKey(hklm)

    def write(self, target: LogTarget, event_id: int, severity: Severity, message: str):
        server = None if target.is_local else target.host
        try:
            handle = self._evtlog.RegisterEventSource(server, target.source)
            try:
                self._evtlog.ReportEvent(handle, self._event_type(severity), 0, event_id, None, [message], None)
            finally:
                self._evtlog.DeregisterEventSource(handle)
        except self._error as e:
            raise MessageActionError(f"Failed to write event {event_id} to {target}: {e}") from e
