from django.urls import path

from .views import (
    CancelOrderView,
    DeliverOrderView,
    MyOrdersView,
    OrderDetailView,
    OrdersCollectionView,
    OrdersPingView,
    OrderStatsView,
    OrderStatusView,
    PayOrderView,
    TrackOrderView,
)

app_name = "orders"

urlpatterns = [
    path("ping/", OrdersPingView.as_view(), name="ping"),
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("mine/", MyOrdersView.as_view(), name="orders-mine"),
    path("stats/", OrderStatsView.as_view(), name="orders-stats"),
    path("track/<str:order_number>/", TrackOrderView.as_view(), name="orders-track"),
    path("<uuid:oid>/", OrderDetailView.as_view(), name="orders-detail"),
    path("<uuid:oid>/cancel/", CancelOrderView.as_view(), name="orders-cancel"),
    path("<uuid:oid>/pay/", PayOrderView.as_view(), name="orders-pay"),
    path("<uuid:oid>/deliver/", DeliverOrderView.as_view(), name="orders-deliver"),
    path("<uuid:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
]
