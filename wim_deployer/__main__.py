import sys

from wim_deployer.main import main


if __name__ == "__main__":
    sys.exit(main())
