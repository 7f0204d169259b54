import sys

from webcast_relay.main import main

sys.exit(main())
