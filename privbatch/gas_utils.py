"""
Gas utilities - EIP-1559 and legacy gas price recommendations
"""
import logging
from typing import Optional, Dict, Any
from web3 import AsyncWeb3, Web3
from web3.types import Wei

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY_FEE_GWEI = 1
BASE_FEE_MARGIN_GWEI = 1


def to_gwei_string(value: Optional[Wei]) -> Optional[str]:
    """Convert Wei to Gwei string"""
    if value is None:
        return None
    return str(Web3.from_wei(value, 'gwei'))


async def get_gas_recommendation(w3: AsyncWeb3) -> Dict[str, Any]:
    """
    Get a gas recommendation from the connected node
    - Prefers EIP-1559 fields (maxFeePerGas, maxPriorityFeePerGas) if the chain supports it
    - Falls back to legacy gasPrice
    - Last resort: safe defaults

    Returns:
        {
            'supports1559': bool,
            'maxFeePerGas': Wei (optional),
            'maxPriorityFeePerGas': Wei (optional),
            'legacyGasPrice': Wei (optional),
            'source': str
        }
    """
    try:
        latest_block = await w3.eth.get_block('latest')
        base_fee = latest_block.get('baseFeePerGas')

        # baseFeePerGas is only present on EIP-1559 chains
        if base_fee is not None:
            priority_fee = Web3.to_wei(DEFAULT_PRIORITY_FEE_GWEI, 'gwei')
            max_fee_per_gas = base_fee + priority_fee + Web3.to_wei(BASE_FEE_MARGIN_GWEI, 'gwei')

            return {
                'supports1559': True,
                'maxFeePerGas': max_fee_per_gas,
                'maxPriorityFeePerGas': priority_fee,
                'legacyGasPrice': None,
                'source': 'block.baseFeePerGas'
            }

        gas_price = await w3.eth.gas_price
        if gas_price:
            return {
                'supports1559': False,
                'maxFeePerGas': None,
                'maxPriorityFeePerGas': None,
                'legacyGasPrice': gas_price,
                'source': 'eth.gas_price'
            }
    except Exception as e:
        logger.warning(f"Provider gas recommendation failed: {e}")

    return {
        'supports1559': True,
        'maxFeePerGas': Web3.to_wei(1, 'gwei'),
        'maxPriorityFeePerGas': Web3.to_wei(1, 'gwei'),
        'legacyGasPrice': None,
        'source': 'fallback-defaults'
    }


def apply_gas_recommendation(tx_params: Dict[str, Any], recommendation: Dict[str, Any]) -> Dict[str, Any]:
    """Set fee fields on transaction params from a recommendation"""
    if recommendation['supports1559']:
        tx_params['maxFeePerGas'] = recommendation['maxFeePerGas']
        tx_params['maxPriorityFeePerGas'] = recommendation['maxPriorityFeePerGas']
    else:
        tx_params['gasPrice'] = recommendation['legacyGasPrice']
    return tx_params
