import sys

from crc import cli

sys.exit(cli.main())
