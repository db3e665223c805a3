"""
Numeración dental canónica del odontograma.

El motor usa la numeración Universal (1-32) para dentición permanente:

    1-8   superior derecho   (tercer molar → incisivo central)
    9-16  superior izquierdo (incisivo central → tercer molar)
    17-24 inferior izquierdo (tercer molar → incisivo central)
    25-32 inferior derecho   (incisivo central → tercer molar)

Para interoperar con sistemas que usan FDI (ISO 3950, dos dígitos) se
expone una biyección explícita; no se asume equivalencia implícita.
"""

import enum

from dentalchart.core.exceptions import ValidationException

TOOTH_COUNT = 32
TOOTH_NUMBERS: tuple[int, ...] = tuple(range(1, TOOTH_COUNT + 1))

# FDI permanentes: 11-18, 21-28, 31-38, 41-48
VALID_FDI_PERMANENT = frozenset(
    q * 10 + p for q in (1, 2, 3, 4) for p in range(1, 9)
)
# FDI deciduos: 51-55, 61-65, 71-75, 81-85 (sin equivalente Universal 1-32)
VALID_FDI_DECIDUOUS = frozenset(
    q * 10 + p for q in (5, 6, 7, 8) for p in range(1, 6)
)


class Quadrant(str, enum.Enum):
    """Cuadrantes anatómicos."""
    UPPER_RIGHT = "upper-right"
    UPPER_LEFT = "upper-left"
    LOWER_LEFT = "lower-left"
    LOWER_RIGHT = "lower-right"


def validate_tooth_number(number: int) -> int:
    if not isinstance(number, int) or isinstance(number, bool) or number not in TOOTH_NUMBERS:
        raise ValidationException(
            f"Número de diente inválido: {number}. Rango válido: 1-{TOOTH_COUNT}."
        )
    return number


def quadrant_for(number: int) -> Quadrant:
    """Cuadrante de un diente; función pura del número."""
    validate_tooth_number(number)
    if number <= 8:
        return Quadrant.UPPER_RIGHT
    if number <= 16:
        return Quadrant.UPPER_LEFT
    if number <= 24:
        return Quadrant.LOWER_LEFT
    return Quadrant.LOWER_RIGHT


def universal_to_fdi(number: int) -> int:
    """Universal 1-32 → FDI permanente (ej: 1 → 18, 8 → 11, 32 → 48)."""
    validate_tooth_number(number)
    if number <= 8:
        return 10 + (9 - number)
    if number <= 16:
        return 20 + (number - 8)
    if number <= 24:
        return 30 + (25 - number)
    return 40 + (number - 24)


def fdi_to_universal(fdi: int) -> int:
    """FDI permanente → Universal 1-32. Los deciduos no tienen equivalente."""
    if fdi in VALID_FDI_DECIDUOUS:
        raise ValidationException(
            f"El diente FDI {fdi} es deciduo y no tiene equivalente en la numeración 1-32."
        )
    if fdi not in VALID_FDI_PERMANENT:
        raise ValidationException(
            f"Número de diente FDI inválido: {fdi}. "
            "Permanentes: 11-18, 21-28, 31-38, 41-48."
        )
    quadrant, position = divmod(fdi, 10)
    if quadrant == 1:
        return 9 - position
    if quadrant == 2:
        return 8 + position
    if quadrant == 3:
        return 25 - position
    return 24 + position
