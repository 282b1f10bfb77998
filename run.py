# run.py
# Description: Entry point for the hybrid-users command line. Same as the installed `hybrid-users` script.
#
# Imports
import sys
#
# Local Imports
from hybrid_users.cli import main
#
#######################################################################################################################


if __name__ == "__main__":
    sys.exit(main())

#
# End of run.py
#######################################################################################################################
