from zephyrus.core import Setup
from zephyrus.items import *
from zephyrus.managers import *
from zephyrus.model import *
from zephyrus.presets import ManagerPresets
