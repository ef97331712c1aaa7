from pathlib import Path

import deployplan

#
# Filesystem
#

DEPLOYMENT_DIR = Path(deployplan.__file__).parent
PLANS_DIR = DEPLOYMENT_DIR / "plans"
ARTIFACTS_DIR = DEPLOYMENT_DIR / "artifacts"

#
# Networks
#

LOCAL_NETWORKS = ["local"]

#
# Contracts
#

OZ_DEPENDENCY_NAME = "openzeppelin"
OZ_DEPENDENCY_VERSION = "5.0.0"
PROXY_CONTRACT_NAME = "TransparentUpgradeableProxy"
PROXY_ADMIN_CONTRACT_NAME = "ProxyAdmin"

# EIP1967 Admin slot - https://eips.ethereum.org/EIPS/eip-1967#admin-address
EIP1967_ADMIN_SLOT = 0xB53127684A568B3173AE13B9F8A6016E243E63B6E8EE1178D6A717850B5D6103

DEFAULT_INITIALIZER = "initialize"

#
# Ledger
#

LEDGER_SUFFIX = ".ledger.jsonl"
