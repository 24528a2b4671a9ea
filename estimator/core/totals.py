"""Estimate-wide totals."""

from estimator.core.costs import compute_item_costs
from estimator.models.estimate import EstimateTotals, EstimateTree, GroupNode

TAX_RATE = 0.13


def compute_subtotal(tree: EstimateTree) -> float:
    """Sum line totals of every item, at any depth. Groups carry no cost."""
    subtotal = 0.0
    for node in tree:
        if isinstance(node, GroupNode):
            subtotal += compute_subtotal(node.children)
        else:
            subtotal += compute_item_costs(node).line_cost_total
    return subtotal


def compute_totals(tree: EstimateTree) -> EstimateTotals:
    """Derive subtotal, discount, tax and final total from the tree."""
    subtotal = compute_subtotal(tree)
    # Discount rules are not defined yet.
    discount_amount = 0.0
    total_after_discount = subtotal - discount_amount
    tax_amount = total_after_discount * TAX_RATE
    return EstimateTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        total_after_discount=total_after_discount,
        tax_amount=tax_amount,
        final_total=total_after_discount + tax_amount,
    )
