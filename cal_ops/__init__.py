"""Microsoft Graph calendar operations"""
from cal_ops.reader import CalendarReader
from cal_ops.store import CalendarStore
from cal_ops.writer import CalendarWriter

__all__ = ['CalendarReader', 'CalendarStore', 'CalendarWriter']
