import sys

from graph_connector.cli import main

sys.exit(main())
