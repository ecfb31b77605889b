from django.urls import path
from .views import OrdersPingView, OrdersCollectionView, RetrieveOrderView, DeliverOrderView
from .views import BatchesView, BatchReleaseView, DriverDeliveriesView
app_name = "orders"

urlpatterns = [
    path("orders/ping/", OrdersPingView.as_view(), name="ping"),
    path("orders/", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("orders/<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("orders/<uuid:oid>/deliver/", DeliverOrderView.as_view(), name="orders-deliver"),
    path("batches/", BatchesView.as_view(), name="batches"),
    path("batches/release/", BatchReleaseView.as_view(), name="batches-release"),
    path("driver/deliveries/", DriverDeliveriesView.as_view(), name="driver-deliveries"),
]
