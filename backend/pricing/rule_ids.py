"""
Stable rule identifiers of the default catalog.

Selections submitted by clients reference rules by these UUIDs. The inference
engine and the subsumption table key on them, so they must not change once
persisted.
"""

# --- Access constraints (per address) ---
NARROW_STAIRS = "40acdd70-5c1f-4936-a53c-8f52e6695a4c"
NARROW_CORRIDORS = "b2b8f00b-00a2-456c-ad06-1150d25d71a3"
INDIRECT_EXIT = "e4b7a2c9-6f1d-4c83-a5e0-9d2f7b3c8e15"
ELEVATOR_TOO_SMALL = "55ea42b9-aed0-465c-8e5f-ee82a7bb8c85"
ELEVATOR_UNAVAILABLE = "a3c1e7d2-4b8f-4e21-9c6a-2f7d8e1b5a40"
ELEVATOR_FORBIDDEN = "c7e2f9a1-0d3b-4a6e-8f12-5b9c3d7e1a62"
MULTILEVEL_ACCESS = "293dc311-6f22-42d8-8b31-b322c0e888f9"
STAIRS_WITHOUT_ELEVATOR = "6c2e8a4f-1d7b-4e95-b3a0-8f4d2c6e9b17"
RESTRICTED_PARKING = "9e3b7d1c-5a2f-4c68-8d4e-1b7f3a9c2e06"
PEDESTRIAN_ZONE = "2d8f4b6a-9c3e-4a17-b5d2-7e1c9f3a6b48"
LONG_CARRY_DISTANCE = "ca6cb6e5-9f5a-4d50-8200-d78d9dedd901"

# --- Items declared per address ---
BULKY_FURNITURE = "f1a9c3e7-2b5d-4f80-b6c4-7e3a9d1f2c58"
HEAVY_ITEMS = "352eabed-8869-460f-b7f0-99237b003cc1"

# --- Global constraints ---
COMPLEX_TRAFFIC = "d85f44a1-3f5f-4e28-883c-778000a2e23e"
DIFFICULT_PARKING = "76d5aa58-d9ad-45c8-8c72-6a03d178d15d"
WEEKEND_SERVICE = "8a4c2e6f-3b9d-4f15-a7c1-5d3e8b2f9a60"

# --- Additional services ---
FURNITURE_DISASSEMBLY = "3f7a1c9e-6d2b-4b84-9e5a-0c8d4f2b7a13"
FURNITURE_REASSEMBLY = "7b1e5d3a-2c8f-4e69-8a4b-3d9f1c6e5b27"
PROFESSIONAL_PACKING = "5a9d3f1b-7e4c-4c22-b8f6-2a6e9d4c1f85"
PIANO_TRANSPORT = "1e6c8a2d-4f9b-4d53-a2e7-9b5d3f8c6a71"
INSURANCE_PREMIUM = "4c8b2f6e-1a5d-4b97-9f3c-6e2a8d5b1c39"

# --- Equipment ---
FURNITURE_LIFT = "5cdd32e3-23d5-413e-a9b4-26a746066ce0"

# --- Reductions ---
LOYAL_CUSTOMER = "b5e1d7a3-9f2c-4e48-8b6d-4a1f7c3e9d52"
LONG_DURATION = "d2a6f8c4-3e7b-4a91-b4d5-8c2e6a1f7b36"
OFF_PEAK_WEEKDAY = "e8c4a6d2-5b1f-4f73-9c8e-2d6b4a8f1e95"

# --- Minimum price (one per service type) ---
MINIMUM_MOVING = "f6b2d8e4-7a3c-4d19-8e5f-1c7a3d9b6e42"
MINIMUM_PACKING = "c1d5e9f3-8b4a-4e26-a6c2-5f9b1e7d3a84"
MINIMUM_CLEANING = "a9e3c7b1-6d2f-4a58-9b1e-4e8c2a6d9f13"
MINIMUM_DELIVERY = "7d3f9b5e-2a8c-4c64-b7e1-9a5d3c8f2b76"
