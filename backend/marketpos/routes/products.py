# backend/marketpos/routes/products.py
"""
Product catalog routes.

- Read operations: any authenticated user
- Create / update: admin, manager
- Delete: admin
"""
from flask import Blueprint, request, jsonify, g

from ..services import products_service
from ..services.products_service import ProductNotFoundError
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth, require_role, client_context

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    Query params:
    - search: str (optional) - substring of name or barcode
    - category: str (optional)
    - low_stock: "true" to only return products at or below min_stock
    """
    products = products_service.list_products(
        search=request.args.get("search"),
        category=request.args.get("category"),
        low_stock=request.args.get("low_stock", "false").lower() == "true",
    )
    return jsonify({"products": [p.to_dict() for p in products], "count": len(products)})


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    product = products_service.get_product(product_id)
    if not product:
        return jsonify({"error": "Product not found"}), 404
    return jsonify({"product": product.to_dict()})


@products_bp.get("/barcode/<string:barcode>")
@require_auth
def get_product_by_barcode(barcode: str):
    product = products_service.get_product_by_barcode(barcode)
    if not product:
        return jsonify({"error": "Product not found"}), 404
    return jsonify({"product": product.to_dict()})


@products_bp.post("")
@require_auth
@require_role("admin", "manager")
def create_product():
    try:
        product = products_service.create_product(
            request.get_json(silent=True),
            actor_id=g.current_user.id,
            **client_context(),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    return jsonify({"product": product.to_dict(), "message": "Product created successfully"}), 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role("admin", "manager")
def update_product(product_id: int):
    try:
        product = products_service.update_product(
            product_id,
            request.get_json(silent=True),
            actor_id=g.current_user.id,
            **client_context(),
        )
    except ProductNotFoundError:
        return jsonify({"error": "Product not found"}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"product": product.to_dict(), "message": "Product updated successfully"})


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role("admin")
def delete_product(product_id: int):
    try:
        products_service.delete_product(product_id, actor_id=g.current_user.id, **client_context())
    except ProductNotFoundError:
        return jsonify({"error": "Product not found"}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    return jsonify({"message": "Product deleted successfully"})
