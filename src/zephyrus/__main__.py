import sys

from zephyrus.cli import main

sys.exit(main())
