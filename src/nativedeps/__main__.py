import sys

from nativedeps.cli import main

sys.exit(main())
