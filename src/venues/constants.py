"""On-chain program ids, seeds, discriminators and account layouts for both venues."""

from solders.pubkey import Pubkey  # type: ignore[import-untyped]

# Bonk.fun launchpad (bonding curve venue)
BONKFUN_PROGRAM_ID = Pubkey.from_string("BFUNm9sH9RP3iKxwbJXVQjvTqDxj8YpvngCBvqxoWZRz")
POOL_SEED = b"pool"
BONDING_CURVE_SEED = b"bonding_curve"
GLOBAL_SEED = b"global"

# Raydium CPMM (constant product venue)
RAYDIUM_CPMM_PROGRAM_ID = Pubkey.from_string("CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C")
RAYDIUM_CPMM_AUTHORITY = Pubkey.from_string("GpMZbSM2GgvTKHJirzeGfMFoaZ8UR2X7F4v8vHTvxFbL")

SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
WSOL_MINT = Pubkey.from_string("So11111111111111111111111111111111111111112")

# 8-byte Anchor discriminators, one per venue/operation pair
BONKFUN_SELL_DISCRIMINATOR = bytes([51, 230, 133, 164, 1, 127, 131, 173])
BONKFUN_BUY_DISCRIMINATOR = bytes([66, 0, 225, 24, 214, 117, 224, 36])
RAYDIUM_SWAP_DISCRIMINATOR = bytes([143, 190, 90, 218, 196, 30, 51, 222])

# Bonding curve pool account: 8 discriminator, 5 × u64 LE, 1 × bool
BC_VIRTUAL_BASE_OFFSET = 8
BC_VIRTUAL_ASSET_OFFSET = 16
BC_REAL_BASE_OFFSET = 24
BC_REAL_ASSET_OFFSET = 32
BC_TOTAL_SUPPLY_OFFSET = 40
BC_COMPLETE_OFFSET = 48
BONDING_CURVE_MIN_SIZE = 49

# CPMM pool state account
CPMM_POOL_SIZE = 680
CPMM_CONFIG_OFFSET = 8
CPMM_CREATOR_OFFSET = 40
CPMM_VAULT_A_OFFSET = 72
CPMM_VAULT_B_OFFSET = 104
CPMM_MINT_A_OFFSET = 264
CPMM_MINT_B_OFFSET = 296
CPMM_OBSERVATION_OFFSET = 424
CPMM_POOL_MIN_SIZE = CPMM_OBSERVATION_OFFSET + 32

# Mints are stored in pool order, so an asset may sit in either slot
CPMM_MINT_OFFSETS = (CPMM_MINT_A_OFFSET, CPMM_MINT_B_OFFSET)

# Transaction packet size ceiling (bytes)
PACKET_DATA_SIZE = 1232

LAMPORTS_PER_SOL = 1_000_000_000
BPS_DENOMINATOR = 10_000
U64_MAX = 2**64 - 1
