"""Protocol constants and ABI method names for the registry and pool contracts."""

ALGORAND_ZERO_ADDRESS = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAY5HFKQ"

# Fees (microalgos)
MIN_TXN_FEE = 1000
SIMULATE_STATIC_FEE = 240_000  # placeholder fee for the main call in a simulate group

# Each fee unit of MIN_TXN_FEE buys this many opcode budget units
OPCODE_BUDGET_PER_FEE_UNIT = 700

# Extra fees that are fixed rather than simulated
FIND_POOL_EXTRA_FEE = 1000
GET_STAKER_INFO_EXTRA_FEE = 3000
CHANGE_NFD_EXTRA_FEE = 1000

# Minimum balance amounts paid alongside some actions
REWARD_TOKEN_OPT_IN_MBR = 100_000
NFD_BOX_STORAGE_MBR = 20_500
NFD_POOL_LINK_FIELD = "u.cav.algo.a"

# Validity windows (rounds)
ADD_POOL_VALIDITY_WINDOW = 100
ADD_STAKE_VALIDITY_WINDOW = 200

MAX_GATING_ASSETS = 4


class RegistryMethods:
    """ABI method names exposed by the validator registry application."""

    GAS = "gas"
    GET_NUM_VALIDATORS = "getNumValidators"
    GET_VALIDATOR_CONFIG = "getValidatorConfig"
    GET_VALIDATOR_STATE = "getValidatorState"
    GET_POOLS = "getPools"
    GET_POOL_INFO = "getPoolInfo"
    GET_NODE_POOL_ASSIGNMENTS = "getNodePoolAssignments"
    GET_MBR_AMOUNTS = "getMbrAmounts"
    GET_PROTOCOL_CONSTRAINTS = "getProtocolConstraints"
    GET_STAKED_POOLS_FOR_ACCOUNT = "getStakedPoolsForAccount"
    DOES_STAKER_NEED_TO_PAY_MBR = "doesStakerNeedToPayMbr"
    FIND_POOL_FOR_STAKER = "findPoolForStaker"
    ADD_VALIDATOR = "addValidator"
    ADD_POOL = "addPool"
    ADD_STAKE = "addStake"
    CHANGE_VALIDATOR_MANAGER = "changeValidatorManager"
    CHANGE_VALIDATOR_SUNSET_INFO = "changeValidatorSunsetInfo"
    CHANGE_VALIDATOR_NFD = "changeValidatorNfd"
    CHANGE_VALIDATOR_COMMISSION_ADDRESS = "changeValidatorCommissionAddress"
    CHANGE_VALIDATOR_REWARD_INFO = "changeValidatorRewardInfo"


class PoolMethods:
    """ABI method names exposed by each staking pool application."""

    GAS = "gas"
    GET_STAKER_INFO = "getStakerInfo"
    INIT_STORAGE = "initStorage"
    REMOVE_STAKE = "removeStake"
    CLAIM_TOKENS = "claimTokens"
    EPOCH_BALANCE_UPDATE = "epochBalanceUpdate"
    LINK_TO_NFD = "linkToNfd"


class PoolGlobalState:
    """Global state keys of a staking pool application."""

    LAST_PAYOUT = "lastPayout"
    WEIGHTED_MOVING_AVERAGE = "ewma"
    ALGOD_VERSION = "algodVer"


STAKERS_BOX = "stakers"
