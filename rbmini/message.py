"""
RaceBox Mini data message decoder.

Frame layout (little-endian, 88 bytes):
    [sync B5 62][class FF id 01][length 80][payload 80 bytes][CK_A CK_B]
"""
import json
import struct
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from enum import IntEnum
from typing import Optional

from .constants import CHECKSUM_SIZE, FRAME_SIZE, HEADER_SIZE, PAYLOAD_SIZE
from .errors import MalformedFrame

HEADER_FMT = "<HHH"
PAYLOAD_FMT = "<IHBBBBBBIiBBBBiiiiIIiiIIHBBhhhhhh"
CHECKSUM_FMT = "<BB"

# Unit conversions
MM_S_TO_KPH = 0.0036
COORD_SCALE = 1e7
HEADING_SCALE = 1e5
PDOP_SCALE = 100.0
MILLI_G = 1000.0
CENTI_DPS = 100.0


class FixStatus(IntEnum):
    NO_FIX = 0
    FIX_2D = 2
    FIX_3D = 3


@dataclass(frozen=True)
class Header:
    start: int           # uint16, 0x62B5 on the wire
    message_class: int   # uint16, class | id << 8
    length: int          # uint16, payload length


@dataclass(frozen=True)
class Datetime:
    """UTC timestamp of the solution. Month is 1-indexed."""
    year: int
    month: int
    day: int
    hour: int
    minute: int
    second: int

    def to_datetime(self) -> Optional[datetime]:
        try:
            return datetime(self.year, self.month, self.day,
                            self.hour, self.minute, self.second, tzinfo=timezone.utc)
        except ValueError:
            return None

    def __str__(self):
        dt = self.to_datetime()
        if dt is None:
            return "No valid datetime"
        return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


@dataclass(frozen=True)
class Coordinates:
    """Longitude/latitude in degrees with a factor of 10^7."""
    longitude: int
    latitude: int

    @property
    def longitude_deg(self) -> float:
        return self.longitude / COORD_SCALE

    @property
    def latitude_deg(self) -> float:
        return self.latitude / COORD_SCALE

    def __str__(self):
        return f"{self.latitude_deg}, {self.longitude_deg}"


@dataclass(frozen=True)
class Checksum:
    ck_a: int
    ck_b: int

    @property
    def value(self) -> int:
        return self.ck_a | (self.ck_b << 8)

    def __str__(self):
        return f"{self.ck_a:02X} {self.ck_b:02X}"


def _bit(value: int, n: int) -> bool:
    return (value >> n) & 1 == 1


@dataclass(frozen=True)
class TelemetryRecord:
    """One decoded RaceBox Mini data message (class 0xFF, id 0x01)."""
    header: Header
    itow: int                  # ms from GPS week start
    datetime: Datetime
    validity: int              # bitmask
    time_accuracy: int         # ns
    nanoseconds: int           # signed, may be negative
    fix_status: int            # FixStatus, unknown values kept raw
    fix_status_flags: int      # bitmask
    date_time_flags: int       # bitmask
    number_of_svs: int
    coordinates: Coordinates
    wgs_altitude: int          # mm, ellipsoid
    msl_altitude: int          # mm, mean sea level
    horizontal_accuracy: int   # mm
    vertical_accuracy: int     # mm
    speed: int                 # mm/s
    heading: int               # deg * 1e5, zero is north
    speed_accuracy: int        # mm/s
    heading_accuracy: int
    pdop: int                  # * 100
    lat_lon_flags: int         # bitmask
    battery_status: int        # bit 7 charging, bits 6..0 percent
    g_force_x: int             # milli-g, front/back
    g_force_y: int             # right/left
    g_force_z: int             # up/down
    rot_rate_x: int            # centi-deg/s, roll
    rot_rate_y: int            # pitch
    rot_rate_z: int            # yaw
    checksum: Checksum

    # ========== Validity flags ==========
    def is_valid_date(self) -> bool:
        return _bit(self.validity, 0)

    def is_valid_time(self) -> bool:
        return _bit(self.validity, 1)

    def is_fully_resolved(self) -> bool:
        return _bit(self.validity, 2)

    def is_valid_magnetic_declination(self) -> bool:
        return _bit(self.validity, 3)

    # ========== Fix status flags ==========
    def is_valid_fix(self) -> bool:
        return _bit(self.fix_status_flags, 0)

    def is_differential_corrections_applied(self) -> bool:
        return _bit(self.fix_status_flags, 1)

    def power_state(self) -> bool:
        """Bits 4..2 of fix_status_flags. Encoding not published by the vendor."""
        return False

    def is_valid_heading(self) -> bool:
        return _bit(self.fix_status_flags, 5)

    def carrier_phase_range_solution(self) -> bool:
        """Bits 7..6 of fix_status_flags. Encoding not published by the vendor."""
        return False

    # ========== Date/time flags ==========
    def is_confirmation_datetime_validity(self) -> bool:
        return _bit(self.date_time_flags, 4)

    def is_confirmed_utc_date_validity(self) -> bool:
        return _bit(self.date_time_flags, 5)

    def is_confirmed_utc_time_validity(self) -> bool:
        return _bit(self.date_time_flags, 6)

    # ========== Lat/lon flags ==========
    def is_valid_position(self) -> bool:
        """Bit 0 set means lat, lon, WGS and MSL altitude are invalid."""
        return not _bit(self.lat_lon_flags, 0)

    def differential_correction_age(self) -> int:
        """Bits 4..1 of lat_lon_flags. Encoding not published by the vendor."""
        return 0

    # ========== Battery ==========
    def is_charging(self) -> bool:
        return _bit(self.battery_status, 7)

    @property
    def battery_level(self) -> int:
        return self.battery_status & 0x7F

    # ========== Derived values ==========
    @property
    def fix(self) -> Optional[FixStatus]:
        try:
            return FixStatus(self.fix_status)
        except ValueError:
            return None

    @property
    def speed_kph(self) -> float:
        return self.speed * MM_S_TO_KPH

    @property
    def heading_deg(self) -> float:
        return self.heading / HEADING_SCALE

    @property
    def pdop_value(self) -> float:
        return self.pdop / PDOP_SCALE

    @property
    def g_forces(self) -> tuple[float, float, float]:
        return (self.g_force_x / MILLI_G, self.g_force_y / MILLI_G, self.g_force_z / MILLI_G)

    @property
    def rot_rates(self) -> tuple[float, float, float]:
        return (self.rot_rate_x / CENTI_DPS, self.rot_rate_y / CENTI_DPS, self.rot_rate_z / CENTI_DPS)

    def with_coordinates(self, longitude: int, latitude: int) -> "TelemetryRecord":
        """Copy of this record at another position. Only used to build test data."""
        return replace(self, coordinates=Coordinates(longitude=longitude, latitude=latitude))

    # ========== Serialization ==========
    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def to_row(self) -> dict:
        """Flat, unit-converted view used for CSV export."""
        gx, gy, gz = self.g_forces
        rx, ry, rz = self.rot_rates
        dt = self.datetime.to_datetime()
        return {
            "itow": self.itow,
            "utc": dt.isoformat() if dt else None,
            "nanoseconds": self.nanoseconds,
            "fix_status": self.fix_status,
            "valid_fix": self.is_valid_fix(),
            "satellites": self.number_of_svs,
            "latitude": self.coordinates.latitude_deg,
            "longitude": self.coordinates.longitude_deg,
            "wgs_altitude_m": self.wgs_altitude / 1000.0,
            "msl_altitude_m": self.msl_altitude / 1000.0,
            "horizontal_accuracy_m": self.horizontal_accuracy / 1000.0,
            "vertical_accuracy_m": self.vertical_accuracy / 1000.0,
            "speed_kph": self.speed_kph,
            "heading_deg": self.heading_deg,
            "pdop": self.pdop_value,
            "battery_percent": self.battery_level,
            "charging": self.is_charging(),
            "g_x": gx,
            "g_y": gy,
            "g_z": gz,
            "rot_x": rx,
            "rot_y": ry,
            "rot_z": rz,
        }

    def __str__(self):
        return (
            "RaceBox Mini Stream\n"
            "\n"
            f"ITOW             {self.itow}\n"
            f"Date/Time        {self.datetime}\n"
            f"Time Accuracy    {self.time_accuracy} {self.nanoseconds}\n"
            f"Number of svs    {self.number_of_svs}\n"
            f"Fix Status       {self.fix_status}\n"
            f"Fix Flags        {self.fix_status_flags}\n"
            f"WGS Altitude     {self.wgs_altitude}\n"
            f"MSL Altitude     {self.msl_altitude}\n"
            f"Accuracy        ({self.horizontal_accuracy},\t{self.vertical_accuracy})\n"
            f"Speed            {self.speed_kph:.1f} kph\n"
            f"Heading          {self.heading}\n"
            f"Speed Accuracy   {self.speed_accuracy}\n"
            f"Heading Accuracy {self.heading_accuracy}\n"
            f"PDOP             {self.pdop}\n"
            f"Lat/Long        ({self.coordinates})\n"
            f"LatG/LongG/AltG ({self.g_force_x},\t{self.g_force_y},\t{self.g_force_z})\n"
            f"RotX/RotY/RotZ  ({self.rot_rate_x},\t{self.rot_rate_y},\t{self.rot_rate_z})\n"
            f"LatLong Flags   {self.lat_lon_flags}\n"
            f"Battery Status  {self.battery_status}\n"
            f"Header/Checksum {self.header.start} {self.header.message_class} "
            f"{self.header.length} {self.checksum}\n"
        )


def decode(frame: bytes) -> TelemetryRecord:
    """
    Decode a raw data message into a TelemetryRecord.
    Does not validate the checksum, call checksum.validate() first.
    Raises MalformedFrame on short or inconsistent input.
    """
    if len(frame) < FRAME_SIZE:
        raise MalformedFrame(f"Frame too short: {len(frame)} bytes, need {FRAME_SIZE}")

    header = Header(*struct.unpack_from(HEADER_FMT, frame, 0))
    if header.length != len(frame) - HEADER_SIZE - CHECKSUM_SIZE:
        raise MalformedFrame(
            f"Length mismatch: header={header.length}, "
            f"actual={len(frame) - HEADER_SIZE - CHECKSUM_SIZE}"
        )
    # a longer payload is tolerated, fields beyond the known layout are ignored
    if header.length < PAYLOAD_SIZE:
        raise MalformedFrame(f"Payload too short: {header.length} bytes, need {PAYLOAD_SIZE}")

    (itow, year, month, day, hour, minute, second, validity,
     time_accuracy, nanoseconds, fix_status, fix_status_flags, date_time_flags,
     number_of_svs, longitude, latitude, wgs_altitude, msl_altitude,
     horizontal_accuracy, vertical_accuracy, speed, heading, speed_accuracy,
     heading_accuracy, pdop, lat_lon_flags, battery_status,
     g_force_x, g_force_y, g_force_z,
     rot_rate_x, rot_rate_y, rot_rate_z) = struct.unpack_from(PAYLOAD_FMT, frame, HEADER_SIZE)

    ck_a, ck_b = struct.unpack_from(CHECKSUM_FMT, frame, len(frame) - CHECKSUM_SIZE)

    return TelemetryRecord(
        header=header,
        itow=itow,
        datetime=Datetime(year, month, day, hour, minute, second),
        validity=validity,
        time_accuracy=time_accuracy,
        nanoseconds=nanoseconds,
        fix_status=fix_status,
        fix_status_flags=fix_status_flags,
        date_time_flags=date_time_flags,
        number_of_svs=number_of_svs,
        coordinates=Coordinates(longitude=longitude, latitude=latitude),
        wgs_altitude=wgs_altitude,
        msl_altitude=msl_altitude,
        horizontal_accuracy=horizontal_accuracy,
        vertical_accuracy=vertical_accuracy,
        speed=speed,
        heading=heading,
        speed_accuracy=speed_accuracy,
        heading_accuracy=heading_accuracy,
        pdop=pdop,
        lat_lon_flags=lat_lon_flags,
        battery_status=battery_status,
        g_force_x=g_force_x,
        g_force_y=g_force_y,
        g_force_z=g_force_z,
        rot_rate_x=rot_rate_x,
        rot_rate_y=rot_rate_y,
        rot_rate_z=rot_rate_z,
        checksum=Checksum(ck_a, ck_b),
    )
