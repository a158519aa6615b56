import sys

from query_bulk_copy.cli import main

sys.exit(main())
