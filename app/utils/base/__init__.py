from app.utils.base.enums import BaseEnum
from app.utils.base.durations import parse_duration
