"""
NEAR Explorer Backend
HTTP API over a NEAR node: account balance details and node pass-through reads
"""

from __future__ import annotations

import logging
import time
from functools import wraps

from flask import Flask, jsonify, request
from flask_cors import CORS
from flasgger import Swagger

from account_details import AccountDetailsService, UpstreamFailure
from config import config
from near_rpc_client import NearRpcClient, NearRpcError, NearRpcTransportError

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL),
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)


# ==================== FLASK APP ====================

app = Flask(__name__)
CORS(app, origins=config.CORS_ORIGINS)

# ==================== SWAGGER CONFIGURATION ====================

swagger_config = {
    "headers": [],
    "specs": [
        {
            "endpoint": 'apispec',
            "route": '/apispec.json',
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/api/docs"
}

swagger_template = {
    "info": {
        "title": "NEAR Explorer API",
        "description": "API for exploring the NEAR blockchain - accounts, balances, transactions, blocks and validators",
        "version": "1.0.0",
    },
    "basePath": "/",
    "schemes": ["https", "http"],
    "tags": [
        {"name": "Health", "description": "Health check endpoints"},
        {"name": "Accounts", "description": "Account and balance endpoints"},
        {"name": "Transactions", "description": "Transaction endpoints"},
        {"name": "Blocks", "description": "Block data endpoints"},
        {"name": "Validators", "description": "Validator endpoints"},
    ]
}

swagger = Swagger(app, config=swagger_config, template=swagger_template)

# Initialize components with NEAR configuration
near_client = NearRpcClient(
    config.NEAR_RPC_URL,
    timeout=config.RPC_TIMEOUT,
    retry_count=config.RPC_RETRY_COUNT,
)
account_details_service = AccountDetailsService(near_client, config.LOCKUP_ACCOUNT_ID_SUFFIX)


def node_handler(name: str):
    """Log START/END around a node-backed handler and map node errors to JSON"""

    def decorator(f):
        @wraps(f)
        def wrapped(*args, **kwargs):
            arguments = list(kwargs.values())
            logger.info(f"{name} START {arguments}")
            try:
                response = f(*args, **kwargs)
            except NearRpcTransportError as e:
                logger.error(f"{name} node unreachable: {e}")
                return jsonify({"error": str(e)}), 502
            except NearRpcError as e:
                if e.is_not_found:
                    return jsonify({"error": str(e)}), 404
                logger.error(f"{name} node error: {e}")
                return jsonify({"error": str(e)}), 502
            except UpstreamFailure as e:
                logger.error(f"{name} upstream failure: {e}")
                return jsonify({"error": str(e), "call": e.call}), 502
            logger.info(f"{name} END {arguments}")
            return response

        return wrapped

    return decorator


# ==================== ACCOUNT ENDPOINTS ====================

@app.route("/api/accounts/<account_id>/details", methods=["GET"])
@node_handler("GET ACCOUNT DETAILS")
def get_account_details_endpoint(account_id):
    """
    Get account balance details, including its lockup account
    ---
    tags:
      - Accounts
    parameters:
      - name: account_id
        in: path
        type: string
        required: true
        description: NEAR account id (e.g., alice.near)
    responses:
      200:
        description: Balance breakdown, all amounts in yoctoNEAR as decimal strings
        schema:
          type: object
          properties:
            storageUsage:
              type: string
            stakedBalance:
              type: string
            nonStakedBalance:
              type: string
            minimumBalance:
              type: string
              description: Balance reserved for storage
            availableBalance:
              type: string
            totalBalance:
              type: string
              description: Own balance plus lockup balance (if any)
            lockupAccountId:
              type: string
              description: Present only when the account has a lockup
            lockupTotalBalance:
              type: string
            lockupLockedBalance:
              type: string
            lockupUnlockedBalance:
              type: string
      404:
        description: Account does not exist
      502:
        description: Node query failed
    """
    details = account_details_service.get_account_details(account_id)
    if details is None:
        return jsonify({"error": f"Account {account_id} does not exist"}), 404
    return jsonify(details.to_dict())


@app.route("/api/accounts/<account_id>", methods=["GET"])
@node_handler("VIEW ACCOUNT")
def view_account_endpoint(account_id):
    """
    Get raw account state
    ---
    tags:
      - Accounts
    parameters:
      - name: account_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: view_account query result
      404:
        description: Account does not exist
      502:
        description: Node query failed
    """
    return jsonify(near_client.query("view_account", account_id=account_id))


@app.route("/api/accounts/<account_id>/access-keys", methods=["GET"])
@node_handler("VIEW ACCESS KEY LIST")
def view_access_key_list_endpoint(account_id):
    """
    Get account access keys
    ---
    tags:
      - Accounts
    parameters:
      - name: account_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: view_access_key_list query result
      404:
        description: Account does not exist
      502:
        description: Node query failed
    """
    return jsonify(near_client.view_access_key_list(account_id))


# ==================== TRANSACTION ENDPOINTS ====================

@app.route("/api/transactions/<tx_hash>", methods=["GET"])
@node_handler("TX")
def transaction_status_endpoint(tx_hash):
    """
    Get transaction status and outcomes
    ---
    tags:
      - Transactions
    parameters:
      - name: tx_hash
        in: path
        type: string
        required: true
      - name: signer
        in: query
        type: string
        required: true
        description: Signer account id, used by the node to route the lookup
    responses:
      200:
        description: tx RPC result
      400:
        description: Missing signer
      502:
        description: Node query failed
    """
    signer = request.args.get("signer", "").strip()
    if not signer:
        return jsonify({"error": "signer query parameter is required"}), 400
    return jsonify(near_client.get_transaction_status(tx_hash, signer))


# ==================== BLOCK / NODE ENDPOINTS ====================

@app.route("/api/blocks/final", methods=["GET"])
@node_handler("FINAL BLOCK")
def final_block_endpoint():
    """
    Get the latest final block
    ---
    tags:
      - Blocks
    responses:
      200:
        description: block RPC result
      502:
        description: Node query failed
    """
    return jsonify(near_client.get_final_block())


@app.route("/api/node/status", methods=["GET"])
@node_handler("STATUS")
def node_status_endpoint():
    """
    Get node status
    ---
    tags:
      - Health
    responses:
      200:
        description: status RPC result
      502:
        description: Node query failed
    """
    return jsonify(near_client.get_status())


@app.route("/api/validators", methods=["GET"])
@node_handler("VALIDATORS")
def validators_endpoint():
    """
    Get current and next epoch validators
    ---
    tags:
      - Validators
    responses:
      200:
        description: validators RPC result
      502:
        description: Node query failed
    """
    return jsonify(near_client.get_validators())


# ==================== HEALTH CHECK ====================

@app.route("/health", methods=["GET"])
def health_check():
    """
    Health check
    ---
    tags:
      - Health
    responses:
      200:
        description: Health status
        schema:
          type: object
          properties:
            status:
              type: string
              description: Overall health status (healthy/degraded)
            node:
              type: object
              properties:
                reachable:
                  type: boolean
                rpc:
                  type: string
            timestamp:
              type: number
    """
    try:
        near_client.get_status()
        node_status = True
    except NearRpcError as e:
        logger.warning(f"RPC health degraded: {e}")
        node_status = False

    status = "healthy" if node_status else "degraded"
    return jsonify({
        "status": status,
        "explorer": "running",
        "node": {
            "reachable": node_status,
            "rpc": config.NEAR_RPC_URL
        },
        "timestamp": time.time()
    }), 200


# ==================== INFO ENDPOINT ====================

@app.route("/", methods=["GET"])
def explorer_info():
    """
    Explorer information
    ---
    tags:
      - Health
    responses:
      200:
        description: Explorer service information
    """
    return jsonify({
        "name": "NEAR Explorer Backend",
        "version": "1.0.0",
        "network": config.NETWORK_NAME,
        "lockup_account_id_suffix": config.LOCKUP_ACCOUNT_ID_SUFFIX,
        "endpoints": {
            "account_details": "/api/accounts/<account_id>/details",
            "account": "/api/accounts/<account_id>",
            "access_keys": "/api/accounts/<account_id>/access-keys",
            "transaction": "/api/transactions/<tx_hash>?signer=<account_id>",
            "final_block": "/api/blocks/final",
            "node_status": "/api/node/status",
            "validators": "/api/validators",
            "health": "/health",
            "swagger_docs": "/api/docs",
            "openapi_spec": "/apispec.json"
        },
        "node_url": config.NEAR_RPC_URL,
        "timestamp": time.time()
    })


if __name__ == "__main__":
    logger.info(f"Starting NEAR Explorer Backend")
    logger.info(f"Network: {config.NETWORK_NAME}")
    logger.info(f"Node RPC URL: {config.NEAR_RPC_URL}")
    logger.info(f"Lockup suffix: {config.LOCKUP_ACCOUNT_ID_SUFFIX}")
    logger.info(f"Port: {config.EXPLORER_PORT}")

    app.run(
        host=config.EXPLORER_HOST,
        port=config.EXPLORER_PORT,
        debug=config.DEBUG,
        threaded=True
    )
