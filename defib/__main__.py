import sys

from defib.cli import main

sys.exit(main())
