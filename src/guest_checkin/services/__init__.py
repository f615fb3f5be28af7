from .admission import AdmissionPipeline
from .attendance_service import AttendanceService, Page, table_tier
from .guest_store import GuestStore, SqliteGuestStore
from .payload_parser import parse_payload
from .qr_scanner import CameraBinding, CameraDecoder
from .scan_session import ScanSessionController, ScanState
from .supabase_store import SupabaseGuestStore

__all__ = [
	"AdmissionPipeline",
	"AttendanceService",
	"CameraBinding",
	"CameraDecoder",
	"GuestStore",
	"Page",
	"ScanSessionController",
	"ScanState",
	"SqliteGuestStore",
	"SupabaseGuestStore",
	"parse_payload",
	"table_tier",
]
