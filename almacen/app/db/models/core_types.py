import enum

class ItemKind(str, enum.Enum):
    material = "MATERIAL"
    equipment = "EQUIPO"
    ppe = "EPP"

class MovementKind(str, enum.Enum):
    entry = "ENTRADA"
    exit = "SALIDA"

class LineStatus(str, enum.Enum):
    pending = "Pendiente"
    partial = "Parcial"
    fulfilled = "Atendido"
    cancelled = "Cancelado"

# lignes encore "ouvertes" (demande non servie)
OPEN_LINE_STATUSES = frozenset({LineStatus.pending, LineStatus.partial})

class PeriodWindow(str, enum.Enum):
    last_7 = "7"
    last_30 = "30"
    last_90 = "90"
    all = "all"
