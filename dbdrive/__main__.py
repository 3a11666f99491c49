import sys

from dbdrive.cli import backup_main


sys.exit(backup_main())
