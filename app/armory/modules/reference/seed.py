"""
Starter reference data loaded by `scripts/init_db.py`.

Rows are matched on their unique key, so re-running only inserts what is missing
and never touches rows an admin has edited.
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.armory.modules.reference.models import (
    Brand,
    BulletStyle,
    Caliber,
    Casing,
    Grain,
    Manufacturer,
    WeaponType,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

MANUFACTURERS = [
    ("Other", "Other", "Other", 999),
    ("Glock", "Glock", "Austria", 100),
    ("Smith & Wesson", "S&W", "USA", 98),
    ("Sturm, Ruger & Co.", "Ruger", "USA", 97),
    ("SIG Sauer", "SIG", "Germany", 96),
    ("Colt's Manufacturing Company", "Colt", "USA", 90),
    ("Springfield Armory", "Springfield", "USA", 88),
    ("Heckler & Koch", "HK", "Germany", 85),
    ("Beretta", "Beretta", "Italy", 84),
    ("FN Herstal", "FN", "Belgium", 82),
    ("Remington Arms", "Remington", "USA", 80),
    ("Mossberg", "Mossberg", "USA", 78),
    ("Savage Arms", "Savage", "USA", 70),
    ("Winchester Repeating Arms", "Winchester", "USA", 68),
    ("Henry Repeating Arms", "Henry", "USA", 65),
    ("CZ (Česká zbrojovka)", "CZ", "Czech Republic", 64),
    ("Walther", "Walther", "Germany", 60),
    ("Taurus", "Taurus", "Brazil", 58),
    ("Kimber", "Kimber", "USA", 55),
    ("Daniel Defense", "DD", "USA", 50),
]

CALIBERS = [
    ("Other", "Other", 999),
    ("9mm Luger", "9mm", 100),
    (".22 LR", "22LR", 98),
    (".45 ACP", "45", 95),
    ("5.56x45mm NATO", "5.56", 94),
    (".223 Remington", "223", 93),
    (".40 S&W", "40", 90),
    (".380 ACP", "380", 88),
    ("12 Gauge", "12ga", 87),
    (".308 Winchester", "308", 85),
    ("7.62x39mm", "7.62x39", 84),
    (".38 Special", "38spl", 82),
    (".357 Magnum", "357", 80),
    ("10mm Auto", "10mm", 75),
    ("6.5 Creedmoor", "6.5CM", 72),
    (".30-06 Springfield", "30-06", 70),
    ("20 Gauge", "20ga", 65),
    (".44 Magnum", "44mag", 62),
    (".300 Blackout", "300BLK", 60),
    ("5.7x28mm", "5.7", 55),
]

WEAPON_TYPES = [
    ("Other", "Other", 999),
    ("Pistol", "Pistol", 100),
    ("Revolver", "Revolver", 90),
    ("Rifle", "Rifle", 95),
    ("Shotgun", "Shotgun", 85),
    ("Carbine", "Carbine", 70),
    ("Pistol Caliber Carbine", "PCC", 60),
    ("Submachine Gun", "SMG", 30),
    ("Machine Gun", "MG", 20),
]

BRANDS = [
    ("Other/Unknown", "Other", 999),
    ("Federal Premium Ammunition", "Federal", 100),
    ("Federal Shotshells", "Federal", 99),
    ("Remington Arms Company", "Remington", 98),
    ("Winchester Ammunition", "Winchester", 97),
    ("Remington Shotshells", "Remington", 97),
    ("Hornady Manufacturing", "Hornady", 96),
    ("Winchester Shotshells", "Winchester", 96),
    ("CCI (Cascade Cartridge, Inc.)", "CCI", 95),
    ("American Eagle (by Federal/Vista Outdoor)", "American Eagle", 92),
    ("Speer", "Speer", 90),
    ("Blazer (by CCI/Vista Outdoor)", "Blazer", 88),
    ("PMC Ammunition (Precision Made Cartridges)", "PMC", 85),
    ("Fiocchi Ammunition", "Fiocchi", 80),
    ("Fiocchi Shotshells", "Fiocchi", 79),
    ("Sellier & Bellot", "S&B", 78),
    ("SIG Sauer Ammunition", "SIG Ammo", 76),
    ("Sierra Bullets", "Sierra", 75),
    ("Prvi Partizan", "PPU", 72),
    ("Nosler", "Nosler", 70),
    ("Norma Precision", "Norma", 68),
    ("Lapua", "Lapua", 66),
    ("Barnes Bullets", "Barnes", 65),
    ("GECO", "GECO", 64),
    ("RWS", "RWS", 62),
    ("Magtech Ammunition", "Magtech", 60),
    ("Aguila Ammunition", "Aguila", 55),
    ("TulaAmmo", "Tula", 50),
    ("Wolf Performance Ammunition", "Wolf", 48),
    ("Barnaul Ammunition", "Barnaul", 45),
    ("Black Hills Ammunition", "Black Hills", 42),
    ("Underwood Ammo", "Underwood", 40),
    ("Buffalo Bore Ammunition", "Buffalo Bore", 38),
    ("Eley", "Eley", 36),
    ("Cor-Bon", "Cor-Bon", 35),
    ("SK Ammunition", "SK", 34),
    ("DoubleTap Ammunition", "DoubleTap", 32),
    ("HSM Ammunition", "HSM", 30),
    ("Berger Bullets", "Berger", 28),
    ("Swift Bullet Company", "Swift", 25),
    ("Kent Cartridge", "Kent", 22),
    ("Rio Ammunition", "Rio", 20),
    ("Estate Cartridge (by Federal/Vista Outdoor)", "Estate", 18),
]

BULLET_STYLES = [
    ("Other", "Other", 999),
    ("Full Metal Jacket", "FMJ", 100),
    ("Jacketed Hollow Point", "JHP", 95),
    ("Soft Point", "SP", 85),
    ("Ballistic Tip", "BT", 80),
    ("Wadcutter", "WC", 70),
    ("Semi-Wadcutter", "SWC", 65),
    ("Hollow Point Boat Tail", "HPBT", 60),
    ("Boat Tail Hollow Point", "BTHP", 60),
    ("Full Metal Jacket Boat Tail", "FMJBT", 55),
    ("Flat Nose", "FN", 50),
    ("Round Nose", "RN", 45),
    ("Lead Round Nose", "LRN", 40),
    ("Frangible", "Frangible", 35),
    ("Tracer", "Tracer", 30),
    ("Armor Piercing", "AP", 25),
    ("Incendiary", "Incendiary", 20),
    ("Solid Copper", "Solid", 15),
    ("Plated", "Plated", 10),
    ("Slug", "Slug", 5),
]

# weight 0 renders as "Other"
GRAINS = [
    (0, 999), (55, 100), (115, 100), (62, 95), (124, 95), (150, 95), (147, 90), (230, 90),
    (123, 90), (40, 90), (180, 85), (168, 85), (36, 85), (165, 80), (77, 80), (175, 80),
    (185, 75), (158, 70), (240, 65), (75, 60), (90, 55), (140, 50), (300, 45), (110, 40),
]

CASINGS = [
    ("Other", 999),
    ("Brass", 100),
    ("Steel", 80),
    ("Nickel-Plated Brass", 70),
    ("Aluminum", 50),
    ("Polymer", 20),
    ("Plastic", 10),
]


def _ensure(s: "Session", model, key_field: str, key, **fields) -> bool:
    if s.query(model).filter(getattr(model, key_field) == key).one_or_none() is not None:
        return False
    now = datetime.utcnow()
    s.add(model(**{key_field: key}, **fields, created_at=now, updated_at=now))
    return True


def seed_reference_data(s: "Session") -> dict[str, int]:
    """Insert missing starter rows; returns the number added per table."""
    added = {
        "manufacturers": sum(
            _ensure(s, Manufacturer, "name", name, nickname=nick, country=country, popularity=pop)
            for name, nick, country, pop in MANUFACTURERS
        ),
        "calibers": sum(_ensure(s, Caliber, "caliber", c, nickname=nick, popularity=pop) for c, nick, pop in CALIBERS),
        "weapon_types": sum(_ensure(s, WeaponType, "type", t, nickname=nick, popularity=pop) for t, nick, pop in WEAPON_TYPES),
        "brands": sum(_ensure(s, Brand, "name", name, nickname=nick, popularity=pop) for name, nick, pop in BRANDS),
        "bullet_styles": sum(_ensure(s, BulletStyle, "type", t, nickname=nick, popularity=pop) for t, nick, pop in BULLET_STYLES),
        "grains": sum(_ensure(s, Grain, "weight", w, popularity=pop) for w, pop in GRAINS),
        "casings": sum(_ensure(s, Casing, "type", t, popularity=pop) for t, pop in CASINGS),
    }
    s.flush()
    return added
