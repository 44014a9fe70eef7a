import sys

from marketplace_sync.cli import main

sys.exit(main())
