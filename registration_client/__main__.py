import sys

from registration_client.cli import main

sys.exit(main())
